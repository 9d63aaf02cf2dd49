"""Value objects returned by the portal client."""

from dataclasses import asdict, dataclass, field

PLACEHOLDER = "N/A"
UNKNOWN_NAME = "Unknown"


@dataclass(frozen=True)
class Credentials:
    """Customer id and password as typed by the user."""

    customer_id: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class DashboardSnapshot:
    """Subscriber details scraped from the dashboard page."""

    name: str = UNKNOWN_NAME
    package: str = PLACEHOLDER
    account_status: str = PLACEHOLDER
    connection_status: str = PLACEHOLDER
    expiry_date: str = PLACEHOLDER
    plan_rate: str = PLACEHOLDER

    @property
    def is_online(self) -> bool:
        return self.connection_status == "ONLINE"

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class UsageEntry:
    """Traffic counters for one reporting day."""

    date: str
    download: int
    upload: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class LiveSpeedSample:
    """Current bandwidth in kbps."""

    download: float = 0.0
    upload: float = 0.0

    @classmethod
    def zero(cls) -> "LiveSpeedSample":
        return cls(0.0, 0.0)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class PaymentRecord:
    """One row of the payment history table."""

    date: str
    amount: str
    method: str
    status: str
    transaction_id: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class LoginOutcome:
    """Result of a login attempt: either a dashboard or a failure reason."""

    dashboard: DashboardSnapshot | None = None
    reason: str | None = None

    @property
    def success(self) -> bool:
        return self.dashboard is not None

    @classmethod
    def ok(cls, dashboard: DashboardSnapshot) -> "LoginOutcome":
        """Create a successful outcome."""
        return cls(dashboard=dashboard)

    @classmethod
    def failure(cls, reason: str) -> "LoginOutcome":
        """Create a failed outcome."""
        return cls(reason=reason)

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "dashboard": self.dashboard.to_dict()}
        return {"success": False, "error": self.reason}
