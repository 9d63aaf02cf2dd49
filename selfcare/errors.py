"""Failure classes raised inside the client and absorbed at its public boundary."""


class PortalError(Exception):
    """Base class for portal failures."""


class TransportFailure(PortalError):
    """Network error, timeout, TLS failure or HTTP error status."""


class AuthenticationRejected(PortalError):
    """The portal refused the credentials or the session has expired."""


class ParseMiss(PortalError):
    """A page or JSON body did not have the expected shape."""
