"""
Tests for the snapshot cache facade.
"""

import asyncio

import pytest
from conftest import ACCOUNT, make_snapshot

from accountdash.exceptions import BackendError
from accountdash.models.domain import ResourceKind, Snapshot
from accountdash.services.cache import SnapshotCache

LICENSE = ResourceKind.LICENSE
DOMAIN = ResourceKind.DOMAIN


class TestSynchronousAccess:
    """get / set / mutate / invalidate never touch the network."""

    def test_get_missing(self, cache, fetcher):
        assert cache.get(LICENSE, ACCOUNT) is None
        assert fetcher.calls == []

    def test_set_and_get(self, cache):
        snapshot = make_snapshot(LICENSE, ["KEY-1"])
        cache.set(LICENSE, ACCOUNT, snapshot)
        assert cache.get(LICENSE, ACCOUNT) is snapshot

    def test_keys_are_per_account(self, cache):
        cache.set(LICENSE, ACCOUNT, make_snapshot(LICENSE, ["KEY-1"]))
        assert cache.get(LICENSE, "other@example.com") is None

    def test_mutate(self, cache):
        cache.set(LICENSE, ACCOUNT, make_snapshot(LICENSE, ["KEY-1"]))

        result = cache.mutate(
            LICENSE, ACCOUNT, lambda s: s.with_entries(s.entries + s.entries)
        )

        assert result is not None
        assert len(cache.get(LICENSE, ACCOUNT).entries) == 2

    def test_mutate_returning_none_leaves_cache(self, cache):
        snapshot = make_snapshot(LICENSE, ["KEY-1"])
        cache.set(LICENSE, ACCOUNT, snapshot)

        cache.mutate(LICENSE, ACCOUNT, lambda s: None)

        assert cache.get(LICENSE, ACCOUNT) is snapshot

    def test_invalidate_marks_stale(self, cache):
        cache.set(LICENSE, ACCOUNT, make_snapshot(LICENSE, []))
        assert cache.is_stale(LICENSE, ACCOUNT) is False
        cache.invalidate(LICENSE, ACCOUNT)
        assert cache.is_stale(LICENSE, ACCOUNT) is True

    def test_clear_one_account(self, cache):
        cache.set(LICENSE, ACCOUNT, make_snapshot(LICENSE, []))
        cache.set(LICENSE, "other@example.com", make_snapshot(LICENSE, []))

        cache.clear(ACCOUNT)

        assert cache.get(LICENSE, ACCOUNT) is None
        assert cache.get(LICENSE, "other@example.com") is not None


class TestRefetch:
    """Tests for ensure / invalidate_and_refetch."""

    @pytest.mark.asyncio
    async def test_ensure_fetches_once(self, cache, fetcher):
        fetcher.script(LICENSE, make_snapshot(LICENSE, ["KEY-1"]))

        first = await cache.ensure(LICENSE, ACCOUNT)
        second = await cache.ensure(LICENSE, ACCOUNT)

        assert first is second
        assert fetcher.count(LICENSE) == 1

    @pytest.mark.asyncio
    async def test_ensure_refetches_stale(self, cache, fetcher):
        fetcher.script(
            LICENSE, make_snapshot(LICENSE, ["KEY-1"]), make_snapshot(LICENSE, ["KEY-1", "KEY-2"])
        )
        await cache.ensure(LICENSE, ACCOUNT)
        cache.invalidate(LICENSE, ACCOUNT)

        snapshot = await cache.ensure(LICENSE, ACCOUNT)

        assert snapshot.count == 2
        assert cache.is_stale(LICENSE, ACCOUNT) is False

    @pytest.mark.asyncio
    async def test_refetch_replaces_whole_snapshot(self, cache, fetcher):
        cache.set(LICENSE, ACCOUNT, make_snapshot(LICENSE, ["OLD"]))
        fetcher.script(LICENSE, make_snapshot(LICENSE, ["NEW"]))

        await cache.invalidate_and_refetch(LICENSE, ACCOUNT)

        assert cache.get(LICENSE, ACCOUNT).keys == ("NEW",)

    @pytest.mark.asyncio
    async def test_refetch_error_propagates_and_keeps_old_snapshot(self, cache, fetcher):
        old = make_snapshot(LICENSE, ["OLD"])
        cache.set(LICENSE, ACCOUNT, old)
        fetcher.script(LICENSE, BackendError("down", status_code=503))

        with pytest.raises(BackendError):
            await cache.invalidate_and_refetch(LICENSE, ACCOUNT)

        assert cache.get(LICENSE, ACCOUNT) is old
        assert cache.is_stale(LICENSE, ACCOUNT) is True

    @pytest.mark.asyncio
    async def test_concurrent_refetches_share_one_request(self):
        calls = 0
        release = asyncio.Event()

        async def slow_fetcher(kind: ResourceKind, account: str) -> Snapshot:
            nonlocal calls
            calls += 1
            await release.wait()
            return make_snapshot(kind, ["KEY-1"])

        cache = SnapshotCache(slow_fetcher)
        waiters = [
            asyncio.create_task(cache.invalidate_and_refetch(LICENSE, ACCOUNT)) for _ in range(5)
        ]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*waiters)

        assert calls == 1
        assert all(r.keys == ("KEY-1",) for r in results)

    @pytest.mark.asyncio
    async def test_kinds_are_fetched_independently(self, cache, fetcher):
        fetcher.script(DOMAIN, make_snapshot(DOMAIN, ["a.com"]))

        await cache.ensure(LICENSE, ACCOUNT)
        await cache.ensure(DOMAIN, ACCOUNT)

        assert fetcher.count(LICENSE) == 1
        assert fetcher.count(DOMAIN) == 1
        assert cache.get(DOMAIN, ACCOUNT).keys == ("a.com",)
