"""
Account Actions - direct edits of an account's licenses and sites.

Unlike purchases these need no checkout and no reconciliation: the backend
applies them synchronously. Site edits are shown optimistically and rolled
back when the backend refuses them; every successful edit marks the
affected snapshots stale so the next read shows server truth.
"""

from structlog import get_logger

from accountdash.exceptions import BackendError, InvalidPurchaseError
from accountdash.models.api import AccountActionResponse
from accountdash.models.domain import ResourceKind, Snapshot
from accountdash.observability.metrics import metrics
from accountdash.services.api_client import DashboardApiClient
from accountdash.services.cache import SnapshotCache
from accountdash.services.checkout import validate_domains
from accountdash.services.optimistic import add_pending_site, mark_site_status

logger = get_logger(__name__)

REMOVED_SITE_STATUS = "inactive"


class AccountActions:
    """
    License activation and site add/remove for one account.

    Usage:
        actions = AccountActions(api_client, cache, "user@example.com")
        await actions.remove_site("example.com")
    """

    def __init__(self, api_client: DashboardApiClient, cache: SnapshotCache, account: str) -> None:
        self._api = api_client
        self._cache = cache
        self.account = account

    @staticmethod
    def _validate_site(site: str) -> str:
        return validate_domains([site], max_domains=1)[0]

    def _restore(self, previous: Snapshot | None) -> None:
        if previous is not None:
            self._cache.set(ResourceKind.DOMAIN, self.account, previous)

    async def activate_license(self, license_key: str, site_domain: str) -> AccountActionResponse:
        """Bind license_key to site_domain; both license and domain views go stale."""
        key = license_key.strip()
        if not key:
            raise InvalidPurchaseError("License key is required")
        domain = self._validate_site(site_domain)

        try:
            result = await self._api.activate_license(self.account, key, domain)
        except BackendError:
            metrics.record_error("BackendError", "activate_license")
            raise

        self._cache.invalidate(ResourceKind.LICENSE, self.account)
        self._cache.invalidate(ResourceKind.DOMAIN, self.account)
        logger.info("license_activated", site=domain)
        return result

    async def add_site(self, site: str, price: str | None = None) -> AccountActionResponse:
        domain = self._validate_site(site)
        previous = self._cache.get(ResourceKind.DOMAIN, self.account)
        add_pending_site(self._cache, self.account, domain)

        try:
            result = await self._api.add_site(self.account, domain, price)
        except BackendError:
            self._restore(previous)
            logger.warning("site_add_rolled_back", site=domain)
            raise

        self._cache.invalidate(ResourceKind.DOMAIN, self.account)
        logger.info("site_added", site=domain)
        return result

    async def remove_site(
        self, site: str, subscription_id: str | None = None
    ) -> AccountActionResponse:
        """Remove a site, showing it inactive until the backend answers."""
        domain = site.strip().lower()
        if not domain:
            raise InvalidPurchaseError("Site is required")
        previous = self._cache.get(ResourceKind.DOMAIN, self.account)
        mark_site_status(self._cache, self.account, domain, REMOVED_SITE_STATUS)

        try:
            result = await self._api.remove_site(self.account, domain, subscription_id)
        except BackendError:
            self._restore(previous)
            logger.warning("site_remove_rolled_back", site=domain)
            raise

        self._cache.invalidate(ResourceKind.DOMAIN, self.account)
        logger.info("site_removed", site=domain)
        return result
