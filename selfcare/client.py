"""Session client for the ISP self-care portal.

The portal is a server-rendered web UI without an API. Login is a browser
flow (landing page for a session cookie, form POST, then the dashboard),
data is scraped from HTML, and live bandwidth comes from an AJAX endpoint
that keeps its response open and appends ``"<down>,<up>"`` pairs to it.

Every public operation is non-throwing: transport and parse failures are
logged and turned into empty, zero or placeholder results. Only a rejected
login is reported, as ``LoginOutcome.failure``.
"""

import logging
from urllib.parse import urljoin, urlparse

import requests

from .cookies import PortalCookieJar
from .errors import AuthenticationRejected, ParseMiss, PortalError, TransportFailure
from .live import LiveSpeedStream, StreamBuffer
from .models import (
    DashboardSnapshot,
    LiveSpeedSample,
    LoginOutcome,
    PaymentRecord,
    UsageEntry,
)
from .parser import (
    parse_dashboard,
    parse_live_speed,
    parse_payment_history,
    parse_usage_history,
)

log = logging.getLogger("selfcare.client")

DEFAULT_BASE_URL = "https://selfcare.bijoy.net"

LANDING_PATH = "/customer/"
LOGIN_PATH = "/customer/login"
DASHBOARD_PATH = "/customer/dashboard"
REPORT_PATH = "/customer/report"
USAGE_PATH = "/customer/totalUsage"
PAYMENTS_PATH = "/customer/customerhistory"
SPEED_PATH = "/du_graph_ajax"

SPEED_PRIME_TYPE = "2"
SPEED_STREAM_TYPE = "1"

USERNAME_FIELD = "USERNAME"
PASSWORD_FIELD = "PASS"

SIGN_IN_MARKER = "Sign in"

# The portal misbehaves for non-browser agents.
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

DEFAULT_TIMEOUT = 20
DEFAULT_SPEED_INTERVAL = 1.5
DEFAULT_SPEED_BACKOFF = 3.0
DEFAULT_SPEED_POLL_WAIT = 1.5

LOGIN_FAILED = "Login failed"
SESSION_EXPIRED = "Session expired"


class PortalSessionClient:
    """Cookie-backed session against the self-care portal.

    One instance is one portal session. It is not safe for concurrent use;
    run calls one at a time off the caller's main thread.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        speed_interval: float = DEFAULT_SPEED_INTERVAL,
        speed_backoff: float = DEFAULT_SPEED_BACKOFF,
        speed_poll_wait: float = DEFAULT_SPEED_POLL_WAIT,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self.speed_interval = speed_interval
        self.speed_backoff = speed_backoff
        self.speed_poll_wait = speed_poll_wait
        if session is None:
            session = requests.Session()
        if not isinstance(session.cookies, PortalCookieJar):
            jar = PortalCookieJar()
            jar.update(session.cookies)
            session.cookies = jar
        self._session = session
        self._session.headers["User-Agent"] = USER_AGENT
        self._customer_id: str | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def customer_id(self) -> str | None:
        """Customer id of the last successful login."""
        return self._customer_id

    @property
    def origin(self) -> str:
        parsed = urlparse(self._base_url)
        return f"{parsed.scheme}://{parsed.netloc}"

    def url(self, path: str) -> str:
        return urljoin(self._base_url + "/", path.lstrip("/"))

    # -- Login --

    def login(self, customer_id: str, password: str) -> LoginOutcome:
        """Log in and return the dashboard, or a failure reason."""
        try:
            self._get(LANDING_PATH).close()
            self._post(
                LOGIN_PATH,
                data={USERNAME_FIELD: customer_id, PASSWORD_FIELD: password},
                headers={"Referer": self.url(LANDING_PATH), "Origin": self.origin},
            ).close()
            dashboard = self._fetch_dashboard()
        except AuthenticationRejected as e:
            log.warning("Portal rejected login for %s: %s", customer_id, e)
            return LoginOutcome.failure(LOGIN_FAILED)
        except TransportFailure as e:
            log.warning("Login for %s failed: %s", customer_id, e)
            return LoginOutcome.failure(f"{LOGIN_FAILED}: {e}")

        self._customer_id = customer_id
        log.info("Auth OK (customer %s, connection %s)", customer_id, dashboard.connection_status)
        self.prime_live_speed()
        return LoginOutcome.ok(dashboard)

    def fetch_dashboard(self) -> LoginOutcome:
        """Re-read the dashboard with the current session."""
        try:
            return LoginOutcome.ok(self._fetch_dashboard())
        except AuthenticationRejected:
            log.warning("Portal session expired")
            return LoginOutcome.failure(SESSION_EXPIRED)
        except TransportFailure as e:
            log.warning("Dashboard fetch failed: %s", e)
            return LoginOutcome.failure(str(e))

    def _fetch_dashboard(self) -> DashboardSnapshot:
        r = self._get(DASHBOARD_PATH)
        try:
            self._raise_for_status(r)
            body = r.text
            final_url = r.url
        finally:
            r.close()
        if self._is_login_page(final_url, body):
            raise AuthenticationRejected(f"dashboard resolved to {final_url}")
        return parse_dashboard(body)

    def _is_login_page(self, final_url: str, body: str) -> bool:
        path = urlparse(final_url or "").path.rstrip("/")
        login_path = urlparse(self.url(LOGIN_PATH)).path.rstrip("/")
        return path == login_path or SIGN_IN_MARKER in (body or "")

    # -- Live speed --

    def prime_live_speed(self) -> bool:
        """Ask the portal to start filling the live speed stream.

        Failures are logged and ignored; returns whether priming went through.
        """
        try:
            self._get(REPORT_PATH).close()
            self._get(
                SPEED_PATH,
                params={"type": SPEED_PRIME_TYPE},
                headers={"X-Requested-With": "XMLHttpRequest"},
            ).close()
            return True
        except TransportFailure as e:
            log.warning("Live speed priming failed: %s", e)
            return False

    def open_speed_stream(self, read_timeout: float | None = None) -> requests.Response:
        """Open the live speed endpoint as a streamed response.

        ``read_timeout=None`` waits forever between bytes; the caller closes
        the response to stop.

        Raises:
            TransportFailure: if the request fails or returns an error status.
        """
        r = self._get(
            SPEED_PATH,
            params={"type": SPEED_STREAM_TYPE},
            headers={
                "X-Requested-With": "XMLHttpRequest",
                "Referer": self.url(REPORT_PATH),
            },
            stream=True,
            timeout=(self._timeout, read_timeout),
        )
        try:
            self._raise_for_status(r)
        except TransportFailure:
            r.close()
            raise
        return r

    def fetch_live_speed(self) -> LiveSpeedSample:
        """Read what the stream delivers within the poll wait and return the last pair."""
        try:
            r = self.open_speed_stream(read_timeout=self.speed_poll_wait)
        except TransportFailure as e:
            log.warning("Live speed poll failed: %s", e)
            return LiveSpeedSample.zero()

        buffer = StreamBuffer(r).start()
        try:
            buffer.wait(self.speed_poll_wait)
            data = buffer.take(block=False)
        finally:
            buffer.close()
        if buffer.error is not None:
            # Read timeout: nothing more arrived within the wait
            log.debug("Live speed poll read ended: %s", buffer.error)
        return parse_live_speed(data.decode("latin-1"))

    def stream_live_speed(self):
        """Return a cancellable, endless iterator of LiveSpeedSamples."""
        return LiveSpeedStream(
            self,
            interval=self.speed_interval,
            backoff=self.speed_backoff,
        )

    # -- Usage & payments --

    def fetch_usage_history(self) -> list[UsageEntry]:
        """Return daily usage entries, or an empty list on any failure."""
        try:
            r = self._get(USAGE_PATH, headers={"X-Requested-With": "XMLHttpRequest"})
            try:
                self._raise_for_status(r)
                try:
                    payload = r.json()
                except ValueError as e:
                    raise ParseMiss(f"usage response is not JSON: {e}") from e
            finally:
                r.close()
            return parse_usage_history(payload)
        except PortalError as e:
            log.warning("Usage history unavailable: %s", e)
            return []

    def fetch_payment_history(self) -> list[PaymentRecord]:
        """Return payment records, or an empty list on any failure."""
        try:
            r = self._get(PAYMENTS_PATH)
            try:
                self._raise_for_status(r)
                body = r.text
            finally:
                r.close()
            return parse_payment_history(body)
        except PortalError as e:
            log.warning("Payment history unavailable: %s", e)
            return []
        except Exception as e:
            log.warning("Payment history could not be parsed: %s", e)
            return []

    # -- Internal helpers --

    def _get(self, path: str, **kwargs) -> requests.Response:
        return self._request("GET", path, **kwargs)

    def _post(self, path: str, **kwargs) -> requests.Response:
        return self._request("POST", path, **kwargs)

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self._timeout)
        kwargs.setdefault("allow_redirects", True)
        url = self.url(path)
        try:
            return self._session.request(method, url, **kwargs)
        except requests.RequestException as e:
            raise TransportFailure(f"{method} {url}: {e}") from e

    @staticmethod
    def _raise_for_status(r: requests.Response) -> None:
        try:
            r.raise_for_status()
        except requests.HTTPError as e:
            raise TransportFailure(str(e)) from e

    def close(self) -> None:
        self._session.close()
