"""
Domain Models - Internal dashboard state using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ResourceKind(str, Enum):
    """Kinds of purchasable resources shown on the dashboard."""

    LICENSE = "license"
    DOMAIN = "domain"


class HandleState(str, Enum):
    """Lifecycle of the auth provider handle."""

    UNRESOLVED = "unresolved"
    RESOLVING = "resolving"
    READY = "ready"
    UNAVAILABLE = "unavailable"


class NotificationType(str, Enum):
    """Severity of a user-facing notification."""

    SUCCESS = "success"
    INFO = "info"
    ERROR = "error"


class CheckoutStatus(str, Enum):
    """Outcome reported by the external checkout page on return."""

    SUCCEEDED = "succeeded"
    CANCELLED = "cancelled"


# ============================================================================
# Pending Intents
# ============================================================================


@dataclass(frozen=True)
class LicensePurchaseIntent:
    """A license purchase that was sent to checkout and is not yet confirmed."""

    expected_quantity: int
    created_at: datetime

    def __post_init__(self) -> None:
        """Validate quantity."""
        if self.expected_quantity < 1:
            raise ValueError(f"Expected quantity must be at least 1: {self.expected_quantity}")

    @property
    def kind(self) -> ResourceKind:
        return ResourceKind.LICENSE

    @property
    def expected_total(self) -> int:
        return self.expected_quantity


@dataclass(frozen=True)
class DomainPurchaseIntent:
    """A domain purchase; domains are kept exactly as the user typed them."""

    expected_domains: tuple[str, ...]
    expected_count: int
    created_at: datetime

    def __post_init__(self) -> None:
        """Validate domain list and count."""
        if not self.expected_domains:
            raise ValueError("Expected domains cannot be empty")
        if self.expected_count < 1:
            raise ValueError(f"Expected count must be at least 1: {self.expected_count}")

    @property
    def kind(self) -> ResourceKind:
        return ResourceKind.DOMAIN

    @property
    def expected_total(self) -> int:
        return self.expected_count


PendingIntent = LicensePurchaseIntent | DomainPurchaseIntent


@dataclass(frozen=True)
class StoredIntent:
    """A pending intent together with the resource count captured before it."""

    intent: PendingIntent
    baseline: int

    def __post_init__(self) -> None:
        """Validate baseline."""
        if self.baseline < 0:
            raise ValueError(f"Baseline cannot be negative: {self.baseline}")

    @property
    def kind(self) -> ResourceKind:
        return self.intent.kind


# ============================================================================
# Cached Snapshots
# ============================================================================


@dataclass(frozen=True)
class SnapshotEntry:
    """One resource row (a license key or a domain) as known locally."""

    key: str
    status: str
    label: str
    site: str | None = None
    billing_period: str | None = None
    created_at: int | None = None
    placeholder: bool = False


@dataclass(frozen=True)
class Snapshot:
    """Last known server truth for one kind and account, plus placeholders."""

    kind: ResourceKind
    entries: tuple[SnapshotEntry, ...] = ()
    fetched_at: datetime | None = None

    @property
    def authoritative(self) -> tuple[SnapshotEntry, ...]:
        """Entries reported by the backend (placeholders excluded)."""
        return tuple(e for e in self.entries if not e.placeholder)

    @property
    def placeholders(self) -> tuple[SnapshotEntry, ...]:
        return tuple(e for e in self.entries if e.placeholder)

    @property
    def count(self) -> int:
        return len(self.authoritative)

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(e.key for e in self.authoritative)

    def with_entries(self, entries: tuple[SnapshotEntry, ...]) -> "Snapshot":
        """Copy of this snapshot with a different entry list."""
        return replace(self, entries=entries)


# ============================================================================
# Auth
# ============================================================================


@dataclass(frozen=True)
class Member:
    """Identity returned by the auth provider, normalized."""

    id: str | None
    email: str | None
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class AuthResult:
    """
    Typed outcome of an operation against the auth provider.

    Operations never raise; they report ok=False with a machine-readable reason.
    """

    ok: bool
    reason: str | None = None
    data: Any = None

    @classmethod
    def success(cls, data: Any = None) -> "AuthResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, reason: str) -> "AuthResult":
        return cls(ok=False, reason=reason)


# ============================================================================
# Checkout and Notifications
# ============================================================================


@dataclass(frozen=True)
class CheckoutReturn:
    """Signal carried by the navigation back from the external checkout page."""

    status: CheckoutStatus | None
    token: str | None = None


@dataclass(frozen=True)
class CheckoutRedirect:
    """Where to send the user to pay for a recorded intent."""

    kind: ResourceKind
    checkout_url: str
    session_id: str | None = None


@dataclass(frozen=True)
class Notification:
    """A message shown to the user."""

    type: NotificationType
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
