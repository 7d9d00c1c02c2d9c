"""
Snapshot Cache - keyed, invalidatable local copy of backend state.

Keys are (resource kind, account). Reads and mutations are synchronous and
never touch the network; refetches replace the whole snapshot, so any
optimistic placeholders disappear as soon as real data lands.
"""

import asyncio
from collections.abc import Awaitable, Callable

from structlog import get_logger

from accountdash.models.domain import ResourceKind, Snapshot

logger = get_logger(__name__)

SnapshotFetcher = Callable[[ResourceKind, str], Awaitable[Snapshot]]
CacheKey = tuple[ResourceKind, str]


class SnapshotCache:
    """
    Cache access facade used by the dashboard views and the reconciler.

    Concurrent refetches of the same key share one backend request.
    """

    def __init__(self, fetcher: SnapshotFetcher) -> None:
        self._fetcher = fetcher
        self._snapshots: dict[CacheKey, Snapshot] = {}
        self._stale: set[CacheKey] = set()
        self._inflight: dict[CacheKey, asyncio.Task[Snapshot]] = {}

    def get(self, kind: ResourceKind, account: str) -> Snapshot | None:
        return self._snapshots.get((kind, account))

    def set(self, kind: ResourceKind, account: str, snapshot: Snapshot) -> None:
        self._snapshots[(kind, account)] = snapshot

    def mutate(
        self,
        kind: ResourceKind,
        account: str,
        fn: Callable[[Snapshot | None], Snapshot | None],
    ) -> Snapshot | None:
        """Apply a local transform; returning None leaves the cache untouched."""
        key = (kind, account)
        updated = fn(self._snapshots.get(key))
        if updated is not None:
            self._snapshots[key] = updated
        return updated

    def invalidate(self, kind: ResourceKind, account: str) -> None:
        self._stale.add((kind, account))

    def is_stale(self, kind: ResourceKind, account: str) -> bool:
        key = (kind, account)
        return key in self._stale or key not in self._snapshots

    async def invalidate_and_refetch(self, kind: ResourceKind, account: str) -> Snapshot:
        """Mark the key stale and fetch it again; raises the fetcher's error."""
        self.invalidate(kind, account)
        return await self._refetch((kind, account))

    async def ensure(self, kind: ResourceKind, account: str) -> Snapshot:
        """Return the cached snapshot, fetching only if it is missing or stale."""
        key = (kind, account)
        cached = self._snapshots.get(key)
        if cached is not None and key not in self._stale:
            return cached
        return await self._refetch(key)

    def clear(self, account: str | None = None) -> None:
        """Forget everything, or everything for one account."""
        if account is None:
            self._snapshots.clear()
            self._stale.clear()
            return
        for key in [k for k in self._snapshots if k[1] == account]:
            del self._snapshots[key]
        self._stale = {k for k in self._stale if k[1] != account}

    async def _refetch(self, key: CacheKey) -> Snapshot:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._fetch_and_store(key))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._drop_inflight(k, t))
        return await asyncio.shield(task)

    def _drop_inflight(self, key: CacheKey, task: asyncio.Task[Snapshot]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            # Retrieved here so a failed fetch with no remaining waiter is not reported as lost
            logger.debug("snapshot_fetch_error_observed", kind=key[0].value)

    async def _fetch_and_store(self, key: CacheKey) -> Snapshot:
        kind, account = key
        snapshot = await self._fetcher(kind, account)
        self._snapshots[key] = snapshot
        self._stale.discard(key)
        logger.debug("snapshot_refreshed", kind=kind.value, count=snapshot.count)
        return snapshot
