"""Client for the ISP self-care portal."""

from .client import PortalSessionClient
from .models import (
    Credentials,
    DashboardSnapshot,
    LiveSpeedSample,
    LoginOutcome,
    PaymentRecord,
    UsageEntry,
)

__all__ = [
    "Credentials",
    "DashboardSnapshot",
    "LiveSpeedSample",
    "LoginOutcome",
    "PaymentRecord",
    "PortalSessionClient",
    "UsageEntry",
]
