"""
Checkout Coordination - from "pay now" to a running reconciliation loop.

Purchase flow:
1. Validate the request (quantity or domain list)
2. Create a checkout session at the backend (opaque redirect target)
3. Persist the pending intent with its baseline count
4. Redirect the user to the external checkout page

Return flow:
- Cancelled: clear every pending intent and tell the user
- Succeeded: for each kind with a stored intent, show placeholders (licenses)
  and start the reconciler; with no stored intent nothing happens
"""

import re
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime, timedelta

from structlog import get_logger

from accountdash.exceptions import BackendError, CheckoutError, InvalidPurchaseError
from accountdash.models.domain import (
    CheckoutRedirect,
    CheckoutReturn,
    CheckoutStatus,
    DomainPurchaseIntent,
    LicensePurchaseIntent,
    ResourceKind,
    StoredIntent,
)
from accountdash.services.api_client import DashboardApiClient
from accountdash.services.cache import SnapshotCache
from accountdash.services.intent_store import IntentStore
from accountdash.services.notifications import Notifier
from accountdash.services.optimistic import add_license_placeholders, remove_license_placeholders
from accountdash.services.reconciler import Reconciler

logger = get_logger(__name__)

DOMAIN_PATTERN = re.compile(r"^([a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$")

SUCCESS_VALUES = frozenset({"success", "succeeded", "true", "1"})
CANCEL_VALUES = frozenset({"cancel", "cancelled", "canceled", "false", "0"})

CANCELLED_MESSAGE = "Payment was cancelled."


def utcnow() -> datetime:
    return datetime.now(UTC)


def validate_domains(domains: Iterable[str], max_domains: int = 5) -> list[str]:
    """
    Trim, pattern-check and de-duplicate typed domains.

    A leading "www." is tolerated. Domains are returned as typed (trimmed);
    matching against backend keys happens later, leniently.
    """
    validated: list[str] = []
    seen: set[str] = set()
    for raw in domains:
        domain = raw.strip()
        if not domain:
            continue
        bare = re.sub(r"^www\.", "", domain, flags=re.IGNORECASE)
        if not DOMAIN_PATTERN.match(bare):
            raise InvalidPurchaseError(
                f'Invalid domain format: "{domain}". Use format like "example.com" or "www.example.com"'
            )
        if domain.lower() in seen:
            raise InvalidPurchaseError(f"Duplicate domain: {domain}")
        seen.add(domain.lower())
        validated.append(domain)

    if not validated:
        raise InvalidPurchaseError("Please enter at least one valid domain")
    if len(validated) > max_domains:
        raise InvalidPurchaseError(f"Maximum {max_domains} sites allowed per purchase")
    return validated


def parse_checkout_return(params: Mapping[str, str]) -> CheckoutReturn:
    """Read the succeeded/cancelled signal and correlation token from query params."""
    raw = params.get("checkout") or params.get("payment")
    status: CheckoutStatus | None = None
    if raw is not None:
        value = raw.strip().lower()
        if value in SUCCESS_VALUES:
            status = CheckoutStatus.SUCCEEDED
        elif value in CANCEL_VALUES:
            status = CheckoutStatus.CANCELLED
    token = params.get("session_id") or params.get("token") or None
    return CheckoutReturn(status=status, token=token)


class CheckoutCoordinator:
    """
    Per-session purchase and return handling for one account.

    Usage:
        coordinator = CheckoutCoordinator(api, cache, store, reconciler, notifier, email)
        redirect = await coordinator.begin_license_purchase(3, "monthly")
        ...
        coordinator.handle_return(parse_checkout_return(request.query_params))
    """

    def __init__(
        self,
        api_client: DashboardApiClient,
        cache: SnapshotCache,
        store: IntentStore,
        reconciler: Reconciler,
        notifier: Notifier,
        account: str,
        max_domains: int = 5,
        intent_max_age_seconds: float = 86400.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._api = api_client
        self._cache = cache
        self._store = store
        self._reconciler = reconciler
        self._notifier = notifier
        self.account = account
        self.max_domains = max_domains
        self.intent_max_age = timedelta(seconds=intent_max_age_seconds)
        self._clock = clock
        self._resumed = False

    @property
    def reconciler(self) -> Reconciler:
        return self._reconciler

    async def _warm(self, kind: ResourceKind) -> None:
        """Load the snapshot once so the baseline reflects what the account already owns."""
        try:
            await self._cache.ensure(kind, self.account)
        except BackendError as exc:
            logger.warning("baseline_snapshot_unavailable", kind=kind.value, error=str(exc))

    @staticmethod
    def _require_url(kind: ResourceKind, checkout_url: str | None) -> str:
        if not checkout_url:
            logger.error("checkout_url_missing", kind=kind.value)
            raise CheckoutError("Failed to create checkout session. Please try again.")
        return checkout_url

    async def begin_license_purchase(
        self, quantity: int, billing_period: str = "monthly"
    ) -> CheckoutRedirect:
        if quantity < 1:
            raise InvalidPurchaseError("Quantity must be at least 1")

        await self._warm(ResourceKind.LICENSE)
        response = await self._api.purchase_quantity(self.account, quantity, billing_period)
        checkout_url = self._require_url(ResourceKind.LICENSE, response.checkout_url)
        self._store.save(LicensePurchaseIntent(expected_quantity=quantity, created_at=self._clock()))

        logger.info("license_checkout_created", quantity=quantity, billing_period=billing_period)
        return CheckoutRedirect(
            kind=ResourceKind.LICENSE,
            checkout_url=checkout_url,
            session_id=response.session_id,
        )

    async def begin_domain_purchase(
        self, domains: Iterable[str], billing_period: str = "monthly"
    ) -> CheckoutRedirect:
        validated = validate_domains(domains, self.max_domains)

        await self._warm(ResourceKind.DOMAIN)
        response = await self._api.create_site_checkout(self.account, validated, billing_period)
        checkout_url = self._require_url(ResourceKind.DOMAIN, response.checkout_url)
        intent = DomainPurchaseIntent(
            expected_domains=tuple(validated),
            expected_count=len(validated),
            created_at=self._clock(),
        )
        self._store.save(intent)

        logger.info("domain_checkout_created", count=len(validated), billing_period=billing_period)
        return CheckoutRedirect(
            kind=ResourceKind.DOMAIN,
            checkout_url=checkout_url,
            session_id=response.session_id,
        )

    def _reconcile(self, stored: StoredIntent) -> None:
        if isinstance(stored.intent, LicensePurchaseIntent):
            current = self._cache.get(ResourceKind.LICENSE, self.account)
            if current is None or not current.placeholders:
                add_license_placeholders(self._cache, self.account, stored.intent.expected_quantity)
        self._reconciler.start(stored)

    def handle_return(self, signal: CheckoutReturn) -> list[ResourceKind]:
        """Act on the return-from-checkout signal; returns the kinds now reconciling."""
        self._resumed = True
        if signal.status is None:
            return []

        if signal.status == CheckoutStatus.CANCELLED:
            self._store.clear_all()
            remove_license_placeholders(self._cache, self.account)
            self._notifier.show_info(CANCELLED_MESSAGE)
            logger.info("checkout_cancelled", token=signal.token)
            return []

        started: list[ResourceKind] = []
        for kind in ResourceKind:
            stored = self._store.load(kind)
            if stored is None:
                continue
            self._reconcile(stored)
            started.append(kind)

        if not started:
            logger.info("checkout_return_without_intent", token=signal.token)
        else:
            logger.info(
                "checkout_return_reconciling",
                kinds=[k.value for k in started],
                token=signal.token,
            )
        return started

    def resume(self) -> list[ResourceKind]:
        """
        Pick up intents left over from before a reload, once per session.

        Intents older than the configured max age are discarded; the rest
        restart their loop from cycle 1.
        """
        if self._resumed:
            return []
        self._resumed = True

        now = self._clock()
        resumed: list[ResourceKind] = []
        for kind in ResourceKind:
            stored = self._store.load(kind)
            if stored is None:
                continue
            if now - stored.intent.created_at > self.intent_max_age:
                logger.info("stale_intent_discarded", kind=kind.value)
                self._store.clear(kind)
                continue
            self._reconcile(stored)
            resumed.append(kind)
        return resumed

    def cancel(self) -> None:
        """Stop reconciling without waiting; stored intents are kept."""
        self._reconciler.cancel()

    async def close(self) -> None:
        await self._reconciler.close()
