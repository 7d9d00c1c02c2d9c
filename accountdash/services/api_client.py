"""
Dashboard Backend Client.

Reads the account's licenses and domains, creates checkout sessions and
posts the account mutations (license activation, adding and removing sites).
Failures surface as BackendError so callers can decide whether they are
fatal (initial load) or absorbed (reconciliation cycles).
"""

from datetime import UTC, datetime
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError
from structlog import get_logger

from accountdash.exceptions import BackendError, BackendTimeoutError, InvalidAccountError
from accountdash.models.api import (
    AccountActionResponse,
    CheckoutSessionResponse,
    DashboardResponse,
    LicensesResponse,
)
from accountdash.models.domain import ResourceKind, Snapshot, SnapshotEntry
from accountdash.observability.metrics import metrics

logger = get_logger(__name__)


def normalize_email(email: str | None) -> str:
    """Validate and normalize an account email (lowercase, trimmed)."""
    if not email or "@" not in email:
        raise InvalidAccountError(email)
    return email.strip().lower()


def licenses_to_snapshot(payload: LicensesResponse) -> Snapshot:
    """Build a license snapshot keyed by license key."""
    entries = []
    for index, lic in enumerate(payload.licenses):
        key = lic.key or lic.id or f"license-{index}"
        entries.append(
            SnapshotEntry(
                key=key,
                status=lic.status,
                label=key,
                site=lic.site,
                billing_period=lic.billing_period,
                created_at=lic.created_at,
            )
        )
    return Snapshot(
        kind=ResourceKind.LICENSE, entries=tuple(entries), fetched_at=datetime.now(UTC)
    )


def sites_to_snapshot(payload: DashboardResponse) -> Snapshot:
    """Build a domain snapshot keyed by the backend's site key."""
    entries = tuple(
        SnapshotEntry(
            key=domain,
            status=site.status,
            label=domain,
            site=domain,
            billing_period=site.billing_period,
            created_at=site.created_at,
        )
        for domain, site in payload.sites.items()
    )
    return Snapshot(kind=ResourceKind.DOMAIN, entries=entries, fetched_at=datetime.now(UTC))


class DashboardApiClient:
    """
    HTTP client for the dashboard backend.

    Usage:
        client = DashboardApiClient(settings.normalized_api_base)
        snapshot = await client.fetch_snapshot(ResourceKind.LICENSE, "user@example.com")
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        short_timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.short_timeout = short_timeout
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Content-Type": "application/json"},
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _send(
        self,
        method: str,
        path: str,
        timeout: float,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        client = self.http_client
        # One client serves every account; backend cookies must never be replayed
        client.cookies.clear()
        try:
            return await client.request(method, path, params=params, json=json, timeout=timeout)
        except httpx.TimeoutException as exc:
            logger.warning("backend_request_timeout", method=method, path=path)
            raise BackendTimeoutError(timeout) from exc
        except httpx.HTTPError as exc:
            logger.warning("backend_request_failed", method=method, path=path, error=str(exc))
            raise BackendError(str(exc) or type(exc).__name__) from exc

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.is_success:
            message = f"API request failed: {response.status_code}"
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                message = str(body.get("error") or body.get("message") or message)
            raise BackendError(message, status_code=response.status_code)
        try:
            return response.json()
        except ValueError as exc:
            raise BackendError("Invalid JSON in response", status_code=response.status_code) from exc

    @staticmethod
    def _parse(model: type[BaseModel], data: Any) -> Any:
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise BackendError(
                f"Unexpected {model.__name__} payload: {exc.error_count()} errors"
            ) from exc

    async def _get_account_resource(self, path: str, email: str) -> Any:
        """
        GET an account-scoped resource by email.

        A 401 surfaces as BackendError. There is no per-user backend session
        behind this client to fall back on, so a retry without the email
        could only return another account's data.
        """
        normalized = normalize_email(email)
        response = await self._send("GET", path, self.timeout, params={"email": normalized})
        if response.status_code == 401:
            logger.warning("backend_email_lookup_unauthorized", path=path)
        return self._decode(response)

    async def get_dashboard(self, email: str) -> DashboardResponse:
        data = await self._get_account_resource("/dashboard", email)
        return self._parse(DashboardResponse, data)

    async def get_licenses(self, email: str) -> LicensesResponse:
        data = await self._get_account_resource("/licenses", email)
        return self._parse(LicensesResponse, data)

    async def fetch_snapshot(self, kind: ResourceKind, email: str) -> Snapshot:
        """Idempotent read of the backend's current truth for one kind."""
        try:
            if kind == ResourceKind.LICENSE:
                snapshot = licenses_to_snapshot(await self.get_licenses(email))
            else:
                snapshot = sites_to_snapshot(await self.get_dashboard(email))
        except BackendError:
            metrics.record_backend_fetch(kind.value, success=False)
            raise
        metrics.record_backend_fetch(kind.value, success=True)
        return snapshot

    async def purchase_quantity(
        self, email: str, quantity: int, billing_period: str
    ) -> CheckoutSessionResponse:
        """Create a checkout session for `quantity` license keys."""
        payload = {
            "email": normalize_email(email),
            "quantity": int(quantity),
            "billing_period": billing_period.lower(),
        }
        response = await self._send("POST", "/purchase-quantity", self.short_timeout, json=payload)
        return self._parse(CheckoutSessionResponse, self._decode(response))

    async def create_site_checkout(
        self, email: str, sites: list[str], billing_period: str
    ) -> CheckoutSessionResponse:
        """Create a checkout session for a batch of domains."""
        payload = {
            "email": normalize_email(email),
            "sites": list(sites),
            "billing_period": billing_period.lower(),
        }
        response = await self._send(
            "POST", "/create-site-checkout", self.short_timeout, json=payload
        )
        return self._parse(CheckoutSessionResponse, self._decode(response))

    async def _post_action(self, path: str, payload: dict[str, Any]) -> AccountActionResponse:
        response = await self._send("POST", path, self.short_timeout, json=payload)
        # An empty success body means the action was accepted
        data = {} if response.is_success and not response.content else self._decode(response)
        result = self._parse(AccountActionResponse, data)
        if result.failed:
            message = result.error or result.message or f"{path} failed"
            logger.warning("backend_action_rejected", path=path, error=message)
            raise BackendError(message, status_code=response.status_code)
        return result

    async def activate_license(
        self, email: str, license_key: str, site_domain: str
    ) -> AccountActionResponse:
        """Bind an unused license key to a site."""
        payload = {
            "license_key": license_key,
            "site_domain": site_domain,
            "email": normalize_email(email),
        }
        return await self._post_action("/activate-license", payload)

    async def add_site(
        self, email: str, site: str, price: str | None = None
    ) -> AccountActionResponse:
        payload: dict[str, Any] = {"site": site, "email": normalize_email(email)}
        if price:
            payload["price"] = price
        return await self._post_action("/add-site", payload)

    async def remove_site(
        self, email: str, site: str, subscription_id: str | None = None
    ) -> AccountActionResponse:
        """Remove a site from the account, cancelling its subscription item."""
        payload: dict[str, Any] = {"site": site.strip().lower(), "email": normalize_email(email)}
        if subscription_id:
            payload["subscription_id"] = subscription_id
        return await self._post_action("/remove-site", payload)
