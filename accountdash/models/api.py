"""
API Models - Pydantic models for backend payloads and dashboard routes.

NO DICTIONARIES - All data structures are strongly typed.
"""

from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from accountdash.models.domain import HandleState, NotificationType, ResourceKind

# ============================================================================
# Backend Payloads (consumed)
# ============================================================================


class BackendLicense(BaseModel):
    """One license as returned by GET /licenses."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str | None = None
    key: str | None = Field(
        None, validation_alias=AliasChoices("license_key", "key", "licenseKey")
    )
    status: str = "active"
    site: str | None = Field(
        None, validation_alias=AliasChoices("used_site_domain", "site", "activatedForSite")
    )
    billing_period: str | None = Field(
        None, validation_alias=AliasChoices("billing_period", "billingPeriod")
    )
    created_at: int | None = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: object) -> object:
        """Backends send numeric ids for older rows."""
        if isinstance(v, int):
            return str(v)
        return v

    @field_validator("created_at", mode="before")
    @classmethod
    def coerce_timestamp(cls, v: object) -> object:
        """Timestamps are epoch seconds; anything else is dropped."""
        if isinstance(v, float):
            return int(v)
        if isinstance(v, str):
            return int(v) if v.isdigit() else None
        return v


class LicensesResponse(BaseModel):
    """GET /licenses response."""

    model_config = ConfigDict(extra="ignore")

    licenses: list[BackendLicense] = Field(default_factory=list)


class BackendSite(BaseModel):
    """One site entry from the dashboard `sites` mapping."""

    model_config = ConfigDict(extra="ignore")

    status: str = "active"
    price: str | None = None
    source: str | None = None
    billing_period: str | None = None
    created_at: int | None = None

    @field_validator("created_at", mode="before")
    @classmethod
    def coerce_timestamp(cls, v: object) -> object:
        if isinstance(v, float):
            return int(v)
        if isinstance(v, str):
            return int(v) if v.isdigit() else None
        return v


class DashboardResponse(BaseModel):
    """GET /dashboard response (sites keyed by domain)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    sites: dict[str, BackendSite] = Field(default_factory=dict)
    pending_sites: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("pending_sites", "pendingSites")
    )

    @field_validator("pending_sites", mode="before")
    @classmethod
    def flatten_pending(cls, v: object) -> object:
        """Pending sites come either as plain strings or {"site": ...} objects."""
        if isinstance(v, list):
            flattened = []
            for item in v:
                if isinstance(item, str):
                    flattened.append(item)
                elif isinstance(item, dict):
                    site = item.get("site") or item.get("site_domain")
                    if site:
                        flattened.append(str(site))
            return flattened
        return v


class CheckoutSessionResponse(BaseModel):
    """Response of the checkout-session endpoints (opaque redirect target)."""

    model_config = ConfigDict(extra="ignore")

    checkout_url: str | None = Field(
        None, validation_alias=AliasChoices("checkout_url", "url", "checkoutUrl")
    )
    session_id: str | None = None
    payment_intent_id: str | None = None


class AccountActionResponse(BaseModel):
    """Response of the account mutation endpoints (activate, add-site, remove-site)."""

    model_config = ConfigDict(extra="ignore")

    success: bool = True
    message: str | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return not self.success or bool(self.error)


# ============================================================================
# Dashboard Routes (produced)
# ============================================================================


BillingPeriod = Literal["monthly", "yearly"]


class PurchaseLicensesRequest(BaseModel):
    """POST /v1/licenses/purchase request body."""

    quantity: int = Field(..., ge=1, le=1000)
    billing_period: BillingPeriod = "monthly"

    @field_validator("billing_period", mode="before")
    @classmethod
    def lowercase_period(cls, v: object) -> object:
        return v.lower() if isinstance(v, str) else v


class PurchaseDomainsRequest(BaseModel):
    """POST /v1/domains/purchase request body."""

    domains: list[str] = Field(..., min_length=1)
    billing_period: BillingPeriod = "monthly"

    @field_validator("billing_period", mode="before")
    @classmethod
    def lowercase_period(cls, v: object) -> object:
        return v.lower() if isinstance(v, str) else v


class CheckoutRedirectResponse(BaseModel):
    """Redirect target for a recorded purchase intent."""

    kind: ResourceKind
    checkout_url: str


class ActivateLicenseRequest(BaseModel):
    """POST /v1/licenses/activate request body."""

    license_key: str = Field(..., min_length=1, max_length=255)
    site_domain: str = Field(..., min_length=1, max_length=253)


class AddSiteRequest(BaseModel):
    """POST /v1/domains/add request body."""

    site: str = Field(..., min_length=1, max_length=253)
    price: str | None = None


class RemoveSiteRequest(BaseModel):
    """POST /v1/domains/remove request body."""

    site: str = Field(..., min_length=1, max_length=253)
    subscription_id: str | None = None


class AccountActionResult(BaseModel):
    """Outcome of an account mutation."""

    ok: bool
    message: str | None = None


class SnapshotEntryResponse(BaseModel):
    """One resource row as shown to the user."""

    key: str
    label: str
    status: str
    site: str | None = None
    billing_period: str | None = None
    created_at: int | None = None
    processing: bool = False


class SnapshotResponse(BaseModel):
    """GET /v1/licenses and GET /v1/dashboard response."""

    kind: ResourceKind
    count: int
    entries: list[SnapshotEntryResponse]
    reconciling: bool = False


class NotificationResponse(BaseModel):
    """One queued notification."""

    type: NotificationType
    message: str
    created_at: str


class SessionResponse(BaseModel):
    """GET /v1/session response."""

    authenticated: bool
    email: str | None = None
    handle_state: HandleState
    reason: str | None = None


class LoginRequest(BaseModel):
    """POST /v1/auth/login request body."""

    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)


class LoginCodeRequest(BaseModel):
    """POST /v1/auth/code request body."""

    email: str = Field(..., min_length=3, max_length=255)


class VerifyCodeRequest(BaseModel):
    """POST /v1/auth/code/verify request body."""

    email: str = Field(..., min_length=3, max_length=255)
    code: str = Field(..., min_length=1, max_length=64)


class AuthResponse(BaseModel):
    """Typed result of an auth operation."""

    ok: bool
    reason: str | None = None


class CheckoutReturnResponse(BaseModel):
    """GET /v1/checkout/return response."""

    status: str | None
    reconciling: list[ResourceKind] = Field(default_factory=list)
