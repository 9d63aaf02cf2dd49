"""Extract structured data from the portal's pages.

The dashboard has no stable ids, so values are found by label text:
locate the element carrying e.g. "Expiry Date" and read the ``<p>`` that
sits next to it in the same card. Every dashboard field falls back to a
placeholder on its own; nothing here raises for missing markup.

Live speed data arrives as ``"<down>,<up>"`` pairs glued together without
a separator (``"12.0,34.0987.0,1.5"``). The pair pattern splits them by
ending an upload value as soon as the following text can start a new pair.
"""

import json
import logging
import re

from bs4 import BeautifulSoup, Comment, NavigableString

from .errors import ParseMiss
from .models import (
    PLACEHOLDER,
    UNKNOWN_NAME,
    DashboardSnapshot,
    LiveSpeedSample,
    PaymentRecord,
    UsageEntry,
)

log = logging.getLogger("selfcare.parser")

LABEL_ACCOUNT_STATUS = "Account Status"
LABEL_CONNECTION_STATUS = "Connection Status"
LABEL_EXPIRY_DATE = "Expiry Date"
LABEL_PLAN_RATE = "Plan rate"

PACKAGE_MARKER = "Mbps"

_IGNORED_PARENTS = {"script", "style", "noscript", "template"}

# An upload value ends where the rest of the buffer could begin another
# "<number>," pair, at a separator character, or at the end of the buffer.
_PAIR_RE = re.compile(r"(\d+\.?\d*?),(\d+\.?\d*?)(?=\d+\.?\d*,|[^\d.,]|$)")

# Raw stream values are bits per second.
_RAW_PER_KBPS = 1000.0


def _clean_text(text: str | None) -> str:
    """Collapse whitespace runs and strip."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


def _visible_strings(soup):
    for node in soup.find_all(string=True):
        if node.parent is not None and node.parent.name in _IGNORED_PARENTS:
            continue
        yield node


def normalize_connection_status(raw: str) -> str:
    """Map status text to ``ONLINE``/``OFFLINE`` when it contains either word."""
    upper = (raw or "").upper()
    if "ONLINE" in upper:
        return "ONLINE"
    if "OFFLINE" in upper:
        return "OFFLINE"
    return raw


# ── Dashboard ──


def _subscriber_name(soup) -> str:
    heading = soup.select_one("aside h2.flex.items-center") or soup.select_one("aside h2")
    if heading is None:
        return UNKNOWN_NAME
    # Own text only: the heading also holds an icon element and comments
    own = "".join(
        s for s in heading.children
        if isinstance(s, NavigableString) and not isinstance(s, Comment)
    )
    return _clean_text(own) or UNKNOWN_NAME


def _package(soup) -> str:
    for node in _visible_strings(soup):
        if PACKAGE_MARKER in node:
            return _clean_text(str(node)) or PLACEHOLDER
    return PLACEHOLDER


def _find_label(soup, label: str):
    """Return the element whose text carries ``label``, spans first."""
    needle = label.lower()
    for span in soup.find_all("span"):
        if needle in span.get_text().lower():
            return span
    for node in _visible_strings(soup):
        if needle in node.lower():
            return node.parent
    return None


def _card_value(soup, label: str) -> str:
    """Read the value displayed next to ``label``."""
    label_el = _find_label(soup, label)
    if label_el is None:
        log.debug("Label not found: %s", label)
        return PLACEHOLDER

    container = label_el.parent
    if container is not None:
        for p in container.find_all("p"):
            if p is label_el or label.lower() in p.get_text().lower():
                continue
            text = _clean_text(p.get_text(" "))
            if text:
                return text

    sibling = label_el.find_next_sibling()
    if sibling is not None:
        text = _clean_text(sibling.get_text(" "))
        if text:
            return text

    log.debug("No value next to label: %s", label)
    return PLACEHOLDER


def parse_dashboard(html: str) -> DashboardSnapshot:
    """Build a DashboardSnapshot from the dashboard page, defaulting missing fields."""
    soup = BeautifulSoup(html or "", "html.parser")
    connection = _card_value(soup, LABEL_CONNECTION_STATUS)
    return DashboardSnapshot(
        name=_subscriber_name(soup),
        package=_package(soup),
        account_status=_card_value(soup, LABEL_ACCOUNT_STATUS),
        connection_status=normalize_connection_status(connection),
        expiry_date=_card_value(soup, LABEL_EXPIRY_DATE),
        plan_rate=_card_value(soup, LABEL_PLAN_RATE),
    )


# ── Payment history ──


def parse_payment_history(html: str) -> list[PaymentRecord]:
    """Map rows of the first data table to PaymentRecords.

    Cells are positional: date, amount, method, status, transaction id.
    Rows with fewer than four cells (headers, spacers) are skipped.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    table = next((t for t in soup.find_all("table") if t.find("td")), None)
    if table is None:
        return []

    records = []
    for row in table.find_all("tr"):
        cells = [_clean_text(td.get_text(" ")) for td in row.find_all("td", recursive=False)]
        if len(cells) < 4:
            continue
        records.append(PaymentRecord(
            date=cells[0],
            amount=cells[1],
            method=cells[2],
            status=cells[3],
            transaction_id=cells[4] if len(cells) >= 5 else "",
        ))
    return records


# ── Usage history ──


def _byte_count(value, field: str) -> int:
    if isinstance(value, bool):
        raise ParseMiss(f"usage field {field} is not a number")
    try:
        count = int(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise ParseMiss(f"usage field {field} is not a number: {value!r}") from e
    if count < 0:
        raise ParseMiss(f"usage field {field} is negative: {count}")
    return count


def parse_usage_history(payload) -> list[UsageEntry]:
    """Parse the usage endpoint body.

    ``value`` is a list of JSON documents encoded as strings, so each element
    is decoded a second time.

    Raises:
        ParseMiss: if the body or any element does not have the expected shape.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("value"), list):
        raise ParseMiss("usage response has no 'value' list")

    entries = []
    for item in payload["value"]:
        if isinstance(item, str):
            try:
                item = json.loads(item)
            except ValueError as e:
                raise ParseMiss(f"usage element is not JSON: {e}") from e
        if not isinstance(item, dict):
            raise ParseMiss("usage element is not an object")
        try:
            date = item["date"]
            download = item["download"]
            upload = item["upload"]
        except KeyError as e:
            raise ParseMiss(f"usage element misses {e}") from e
        entries.append(UsageEntry(
            date=str(date),
            download=_byte_count(download, "download"),
            upload=_byte_count(upload, "upload"),
        ))
    return entries


# ── Live speed ──


def extract_live_speed(buffer: str) -> tuple[LiveSpeedSample | None, int]:
    """Return the most recent sample in ``buffer`` and the offset consumed.

    Older pairs in the same buffer are superseded. Returns ``(None, 0)`` when
    the buffer holds no complete pair.
    """
    last = None
    for last in _PAIR_RE.finditer(buffer or ""):
        pass
    if last is None:
        return None, 0
    sample = LiveSpeedSample(
        download=float(last.group(1)) / _RAW_PER_KBPS,
        upload=float(last.group(2)) / _RAW_PER_KBPS,
    )
    return sample, last.end()


def parse_live_speed(buffer: str) -> LiveSpeedSample:
    """Like extract_live_speed, but a buffer without pairs yields a zero sample."""
    sample, _ = extract_live_speed(buffer)
    return sample or LiveSpeedSample.zero()
