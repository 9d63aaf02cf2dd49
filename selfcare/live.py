"""Live bandwidth from the portal's streaming endpoint.

The endpoint never finishes its response; the server keeps appending
``"<down>,<up>"`` pairs to it. A reader thread copies arriving bytes into a
``StreamBuffer``, and the consumer takes whatever has accumulated since its
last look, keeping only the newest pair.
"""

import logging
import threading
from collections import deque

from .errors import TransportFailure
from .models import LiveSpeedSample
from .parser import extract_live_speed

log = logging.getLogger("selfcare.live")

# Byte-wise reads return as soon as anything arrives instead of waiting
# for a full block.
STREAM_READ_SIZE = 1

# Unparseable data beyond this size is dropped.
MAX_PENDING_BYTES = 4096

DEFAULT_HISTORY = 50


class StreamBuffer:
    """Bytes of a streamed response, filled by a background reader thread."""

    def __init__(self, response, read_size: int = STREAM_READ_SIZE):
        self._response = response
        self._read_size = read_size
        self._data = bytearray()
        self._cond = threading.Condition()
        self._finished = False
        self._closed = False
        self.error: Exception | None = None
        self.consumed = 0
        self._thread = threading.Thread(
            target=self._run, name="live-speed-reader", daemon=True
        )

    def start(self) -> "StreamBuffer":
        self._thread.start()
        return self

    @property
    def finished(self) -> bool:
        with self._cond:
            return self._finished

    def _run(self):
        try:
            for chunk in self._response.iter_content(chunk_size=self._read_size):
                if not chunk:
                    continue
                with self._cond:
                    self._data += chunk
                    self._cond.notify_all()
        except Exception as e:
            # Handed to the consumer through .error
            self.error = e
        finally:
            with self._cond:
                self._finished = True
                self._cond.notify_all()

    def take(self, block: bool = True, timeout: float | None = None) -> bytes:
        """Return the bytes that arrived since the last call.

        With ``block`` set, waits until at least one byte is available, the
        stream ends, or the buffer is closed.
        """
        with self._cond:
            if block:
                self._cond.wait_for(
                    lambda: self._data or self._finished or self._closed, timeout
                )
            data = bytes(self._data)
            self._data.clear()
            self.consumed += len(data)
            return data

    def wait(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for the stream to end."""
        with self._cond:
            return self._cond.wait_for(lambda: self._finished or self._closed, timeout)

    def close(self):
        """Close the response and wake up any waiting consumer."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()
        try:
            self._response.close()
        except Exception as e:
            log.debug("Closing live speed response failed: %s", e)


class LiveSpeedStream:
    """Endless, cancellable iterator of LiveSpeedSamples.

    After each sample it waits ``interval`` seconds before looking at new
    data. When the connection fails or the portal ends the response, it
    waits ``backoff`` seconds, primes the endpoint again and reconnects.
    ``cancel()`` may be called from any thread.
    """

    def __init__(self, client, interval: float = 1.5, backoff: float = 3.0):
        self._client = client
        self.interval = interval
        self.backoff = backoff
        self.reconnects = 0
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._buffer: StreamBuffer | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def __iter__(self):
        return self._samples()

    def cancel(self):
        """Stop the stream and close its connection."""
        self._cancelled.set()
        with self._lock:
            buffer = self._buffer
        if buffer is not None:
            buffer.close()

    def _samples(self):
        first = True
        while not self._cancelled.is_set():
            if not first:
                self._client.prime_live_speed()
                if self._cancelled.is_set():
                    break
            first = False
            try:
                reason = yield from self._read_stream()
            except TransportFailure as e:
                reason = str(e)
            if self._cancelled.is_set():
                break
            self.reconnects += 1
            log.warning(
                "Live speed stream interrupted (%s), reconnecting in %.1fs",
                reason, self.backoff,
            )
            self._cancelled.wait(self.backoff)
        log.info("Live speed stream stopped")

    def _read_stream(self):
        """Yield samples from one connection; return why it ended."""
        response = self._client.open_speed_stream()
        buffer = StreamBuffer(response)
        with self._lock:
            self._buffer = buffer
        if self._cancelled.is_set():
            buffer.close()
            return "cancelled"
        buffer.start()

        pending = b""
        emitted = False
        try:
            while not self._cancelled.is_set():
                data = buffer.take()
                if not data:
                    if buffer.finished or self._cancelled.is_set():
                        break
                    continue
                pending += data
                # latin-1 keeps character offsets equal to byte offsets
                sample, consumed = extract_live_speed(pending.decode("latin-1"))
                if sample is None:
                    if len(pending) > MAX_PENDING_BYTES:
                        log.debug("Dropping %d bytes without a speed pair", len(pending))
                        pending = b""
                    continue
                pending = pending[consumed:]
                emitted = True
                yield sample
                self._cancelled.wait(self.interval)
        finally:
            with self._lock:
                self._buffer = None
            buffer.close()

        if self._cancelled.is_set():
            return "cancelled"
        if not emitted:
            yield LiveSpeedSample.zero()
        if buffer.error is not None:
            return str(buffer.error)
        return "response ended"


class SpeedMonitor:
    """Background thread that follows the live speed stream.

    Keeps the latest sample and a bounded history for charting.
    """

    def __init__(self, client, history_size: int = DEFAULT_HISTORY):
        self._client = client
        self._history: deque[LiveSpeedSample] = deque(maxlen=history_size)
        self._latest: LiveSpeedSample | None = None
        self._seq = 0
        self._cond = threading.Condition()
        self._stream: LiveSpeedStream | None = None
        self._thread: threading.Thread | None = None
        self._running = False

    @property
    def latest(self) -> LiveSpeedSample | None:
        with self._cond:
            return self._latest

    @property
    def history(self) -> list[LiveSpeedSample]:
        with self._cond:
            return list(self._history)

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self):
        """Start following the stream."""
        if self.is_running:
            return
        self._stream = self._client.stream_live_speed()
        self._running = True
        self._thread = threading.Thread(target=self._loop, name="speed-monitor", daemon=True)
        self._thread.start()
        log.info("Speed monitor started (history=%d)", self._history.maxlen)

    def stop(self, timeout: float = 10):
        """Cancel the stream and wait for the thread to finish."""
        if self._stream is not None:
            self._stream.cancel()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        with self._cond:
            self._cond.notify_all()
        log.info("Speed monitor stopped")

    def record(self, sample: LiveSpeedSample):
        with self._cond:
            self._latest = sample
            self._history.append(sample)
            self._seq += 1
            self._cond.notify_all()

    def wait_for_sample(self, seen: int, timeout: float | None = None):
        """Block until a sample newer than sequence ``seen`` exists.

        Returns ``(seq, sample)``; sample is None on timeout or when the
        monitor is not running.
        """
        with self._cond:
            self._cond.wait_for(lambda: self._seq > seen or not self.is_running, timeout)
            if self._seq > seen:
                return self._seq, self._latest
            return seen, None

    def _loop(self):
        try:
            for sample in self._stream:
                self.record(sample)
        except Exception as e:
            log.error("Speed monitor error: %s", e)
        finally:
            with self._cond:
                self._running = False
                self._cond.notify_all()
