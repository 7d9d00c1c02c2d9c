"""
Dashboard Runtime - process-wide owner of the long-lived collaborators.

One runtime exists per application (created in the lifespan). It holds the
provider registry, the handle acquirer, the auth service, the backend client
and the snapshot cache, plus per-session state: a notifier, and a checkout
coordinator with its intent store and reconciler once the account is known.

Sessions idle for longer than SESSION_IDLE_TIMEOUT_SECONDS are evicted on the
next access, and the least recently used one goes once MAX_SESSIONS is
reached. Eviction cancels the session's reconcile loops; intents persisted
in file storage survive and resume when the tab comes back.
"""

import asyncio
import time
from collections import OrderedDict
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any

import httpx
from structlog import get_logger

from accountdash.config import Settings
from accountdash.services.api_client import DashboardApiClient
from accountdash.services.auth import AuthService
from accountdash.services.cache import SnapshotCache
from accountdash.services.checkout import CheckoutCoordinator
from accountdash.services.handle import (
    AcquisitionPolicy,
    HandleAcquirer,
    ProviderRegistry,
    load_provider_module,
)
from accountdash.services.intent_store import (
    FileSessionStorage,
    IntentStore,
    MemorySessionStorage,
    SessionStorage,
)
from accountdash.services.notifications import Notifier
from accountdash.services.reconciler import ReconcilePolicy, Reconciler, Sleep

logger = get_logger(__name__)


@dataclass
class DashboardSession:
    """State of one browser tab."""

    session_id: str
    notifier: Notifier = field(default_factory=Notifier)
    storage: SessionStorage | None = None
    coordinator: CheckoutCoordinator | None = None
    last_seen: float = 0.0


class DashboardRuntime:
    """
    Usage:
        runtime = DashboardRuntime(settings)
        await runtime.start()
        coordinator = runtime.coordinator(session_id, "user@example.com")
        ...
        await runtime.close()
    """

    def __init__(
        self,
        settings: Settings,
        registry: ProviderRegistry | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.registry = registry or ProviderRegistry()
        self.acquirer = HandleAcquirer(
            self.registry, AcquisitionPolicy.from_settings(settings), sleep=sleep
        )
        self.auth = AuthService(
            self.acquirer,
            acquire_timeout=settings.auth_acquire_timeout_seconds,
            session_ready_timeout=settings.session_ready_timeout_seconds,
        )
        self.api_client = DashboardApiClient(
            settings.normalized_api_base,
            timeout=settings.request_timeout_seconds,
            short_timeout=settings.request_timeout_short_seconds,
            http_client=http_client,
        )
        self.cache = SnapshotCache(self.api_client.fetch_snapshot)
        self.reconcile_policy = ReconcilePolicy.from_settings(settings)
        self._sleep = sleep
        self._clock = clock
        self._sessions: OrderedDict[str, DashboardSession] = OrderedDict()
        self._background: set[asyncio.Task[Any]] = set()

    async def start(self) -> None:
        """Load the provider package and begin handle acquisition without blocking startup."""
        self._spawn(self._acquire_handle(), "handle-acquisition")
        logger.info(
            "runtime_started",
            provider_module=self.settings.auth_provider_module or None,
            storage_backend=self.settings.session_storage_backend,
        )

    async def _acquire_handle(self) -> None:
        if self.settings.auth_provider_module:
            await load_provider_module(self.registry, self.settings.auth_provider_module)
        await self.acquirer.acquire()

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _storage_for(self, session_id: str) -> SessionStorage | None:
        backend = self.settings.session_storage_backend
        if backend == "file":
            return FileSessionStorage(self.settings.session_storage_dir, session_id)
        if backend == "memory":
            return MemorySessionStorage()
        return None

    def session(self, session_id: str) -> DashboardSession:
        """Get or create the session, evicting idle and least recently used ones."""
        now = self._clock()
        self._evict_idle(now)
        session = self._sessions.get(session_id)
        if session is None:
            session = DashboardSession(session_id=session_id, storage=self._storage_for(session_id))
            self._sessions[session_id] = session
            logger.debug("dashboard_session_created", session_id=session_id)
            while len(self._sessions) > self.settings.max_sessions:
                oldest = next(iter(self._sessions))
                self._evict(oldest, "capacity")
        else:
            self._sessions.move_to_end(session_id)
        session.last_seen = now
        return session

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def _evict_idle(self, now: float) -> None:
        timeout = self.settings.session_idle_timeout_seconds
        while self._sessions:
            session_id, oldest = next(iter(self._sessions.items()))
            if now - oldest.last_seen <= timeout:
                break
            self._evict(session_id, "idle")

    def _evict(self, session_id: str, reason: str) -> None:
        session = self._sessions.pop(session_id)
        if session.coordinator is not None:
            session.coordinator.cancel()
        logger.info("dashboard_session_evicted", session_id=session_id, reason=reason)

    def coordinator(self, session_id: str, account: str) -> CheckoutCoordinator:
        """Per-session coordinator for `account`; rebuilt when the account changes."""
        session = self.session(session_id)
        current = session.coordinator
        if current is not None and current.account == account:
            return current
        if current is not None:
            logger.info("dashboard_session_account_changed", session_id=session_id)
            current.cancel()

        store = IntentStore(session.storage, self.cache, account)
        reconciler = Reconciler(
            store,
            self.cache,
            session.notifier,
            account,
            policy=self.reconcile_policy,
            sleep=self._sleep,
        )
        session.coordinator = CheckoutCoordinator(
            self.api_client,
            self.cache,
            store,
            reconciler,
            session.notifier,
            account,
            max_domains=self.settings.max_domains_per_purchase,
            intent_max_age_seconds=self.settings.intent_max_age_seconds,
        )
        return session.coordinator

    def end_session(self, session_id: str) -> None:
        """Forget a session after logout; its pending loops are cancelled."""
        session = self._sessions.pop(session_id, None)
        if session is not None and session.coordinator is not None:
            self.cache.clear(session.coordinator.account)
            session.coordinator.cancel()

    async def close(self) -> None:
        for session in self._sessions.values():
            if session.coordinator is not None:
                await session.coordinator.close()
        self._sessions.clear()

        for task in list(self._background):
            task.cancel()
        for task in list(self._background):
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self.acquirer.close()
        await self.api_client.close()
        logger.info("runtime_closed")
