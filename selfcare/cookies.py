"""Cookie jar that follows the portal's cookie conventions.

The portal answers many requests with ``Set-Cookie: rememberMe=deleteMe``
(usually with ``Max-Age=0``). A stock cookie jar treats that as an expiry
and drops the live cookie of the same name, which logs the session out.
``PortalCookieJar`` ignores those markers and keeps exactly one cookie per
name and host.
"""

import logging

from requests.cookies import RequestsCookieJar

log = logging.getLogger("selfcare.cookies")

DELETE_MARKER = "deleteme"


def is_delete_marker(value) -> bool:
    """True if a cookie value is the portal's deletion marker."""
    if value is None:
        return False
    return value.strip().strip('"').lower() == DELETE_MARKER


def _host(domain: str) -> str:
    return (domain or "").lstrip(".").lower()


class PortalCookieJar(RequestsCookieJar):
    """RequestsCookieJar that ignores ``deleteMe`` markers and merges by name."""

    def _cookie_from_cookie_tuple(self, tup, request):
        # Expired cookies are cleared inside this hook, before set_cookie runs,
        # so the marker has to be caught here.
        name, value = tup[0], tup[1]
        if is_delete_marker(value):
            log.debug("Ignoring deletion marker for cookie %s", name)
            return None
        return super()._cookie_from_cookie_tuple(tup, request)

    def set_cookie(self, cookie, *args, **kwargs):
        if is_delete_marker(cookie.value):
            log.debug("Ignoring deletion marker for cookie %s", cookie.name)
            return None
        host = _host(cookie.domain)
        for existing in list(self):
            if existing.name != cookie.name or _host(existing.domain) != host:
                continue
            if (existing.domain, existing.path) != (cookie.domain, cookie.path):
                self.clear(existing.domain, existing.path, existing.name)
        return super().set_cookie(cookie, *args, **kwargs)

    def for_host(self, host: str) -> dict:
        """Return ``{name: value}`` of the cookies stored for ``host``."""
        host = _host(host)
        return {c.name: c.value for c in self if _host(c.domain) == host}
