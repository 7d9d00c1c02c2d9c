"""
Tests for the dashboard runtime, settings validation and notifications.
"""

from datetime import UTC, datetime

import pytest
from conftest import ACCOUNT

from accountdash.config import ConfigurationError, Settings
from accountdash.models.domain import LicensePurchaseIntent, NotificationType, ResourceKind
from accountdash.services.intent_store import (
    FileSessionStorage,
    IntentStore,
    MemorySessionStorage,
)
from accountdash.services.notifications import Notifier
from accountdash.services.reconciler import LoopState
from accountdash.services.runtime import DashboardRuntime

BASE = "http://backend.test"


def make_settings(**overrides) -> Settings:
    return Settings(**{"api_base": BASE, **overrides})


class TestSettings:
    """Tests for Settings validation."""

    def test_normalized_api_base(self):
        assert make_settings(api_base="http://backend.test/").normalized_api_base == BASE

    @pytest.mark.parametrize("api_base", ["", "backend.test"])
    def test_rejects_bad_api_base(self, api_base):
        with pytest.raises(ConfigurationError):
            Settings(api_base=api_base)

    def test_rejects_unknown_storage_backend(self):
        with pytest.raises(ConfigurationError):
            make_settings(session_storage_backend="redis")

    def test_rejects_file_backend_without_dir(self):
        with pytest.raises(ConfigurationError):
            make_settings(session_storage_backend="file", session_storage_dir="")

    def test_rejects_zero_cycles(self):
        with pytest.raises(ConfigurationError):
            make_settings(reconcile_max_cycles=0)

    @pytest.mark.parametrize(
        "overrides", [{"session_idle_timeout_seconds": 0}, {"max_sessions": 0}]
    )
    def test_rejects_non_positive_session_limits(self, overrides):
        with pytest.raises(ConfigurationError):
            make_settings(**overrides)


class TestSessions:
    """Tests for per-session state owned by DashboardRuntime."""

    def test_memory_storage(self):
        runtime = DashboardRuntime(make_settings(session_storage_backend="memory"))
        assert isinstance(runtime.session("s" * 20).storage, MemorySessionStorage)

    def test_file_storage(self, tmp_path):
        runtime = DashboardRuntime(
            make_settings(session_storage_backend="file", session_storage_dir=str(tmp_path))
        )
        assert isinstance(runtime.session("s" * 20).storage, FileSessionStorage)

    def test_no_storage(self):
        runtime = DashboardRuntime(make_settings(session_storage_backend="none"))
        assert runtime.session("s" * 20).storage is None

    def test_session_is_reused(self):
        runtime = DashboardRuntime(make_settings())
        assert runtime.session("a" * 20) is runtime.session("a" * 20)
        assert runtime.session("a" * 20) is not runtime.session("b" * 20)

    @pytest.mark.asyncio
    async def test_coordinator_per_account(self):
        runtime = DashboardRuntime(make_settings(max_domains_per_purchase=3))

        first = runtime.coordinator("a" * 20, ACCOUNT)
        assert runtime.coordinator("a" * 20, ACCOUNT) is first
        assert first.max_domains == 3

        second = runtime.coordinator("a" * 20, "other@example.com")
        assert second is not first
        assert second.account == "other@example.com"
        await runtime.close()

    @pytest.mark.asyncio
    async def test_end_session(self):
        runtime = DashboardRuntime(make_settings())
        first = runtime.coordinator("a" * 20, ACCOUNT)

        runtime.end_session("a" * 20)

        assert runtime.coordinator("a" * 20, ACCOUNT) is not first
        await runtime.close()


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestSessionEviction:
    """Tests for idle and capacity eviction of dashboard sessions."""

    def test_idle_session_is_evicted(self):
        clock = FakeClock()
        runtime = DashboardRuntime(make_settings(session_idle_timeout_seconds=60), clock=clock)
        first = runtime.session("a" * 20)

        clock.now += 61
        runtime.session("b" * 20)

        assert not runtime.has_session("a" * 20)
        assert runtime.session("a" * 20) is not first

    def test_access_keeps_session_alive(self):
        clock = FakeClock()
        runtime = DashboardRuntime(make_settings(session_idle_timeout_seconds=60), clock=clock)
        first = runtime.session("a" * 20)

        clock.now += 40
        runtime.session("a" * 20)
        clock.now += 40
        runtime.session("b" * 20)

        assert runtime.has_session("a" * 20)
        assert runtime.session("a" * 20) is first

    def test_least_recently_used_session_is_evicted_at_capacity(self):
        runtime = DashboardRuntime(make_settings(max_sessions=2), clock=FakeClock())
        runtime.session("a" * 20)
        runtime.session("b" * 20)
        runtime.session("a" * 20)

        runtime.session("c" * 20)

        assert runtime.has_session("a" * 20)
        assert not runtime.has_session("b" * 20)
        assert runtime.has_session("c" * 20)

    @pytest.mark.asyncio
    async def test_evicted_session_loops_are_cancelled(self):
        clock = FakeClock()
        runtime = DashboardRuntime(
            make_settings(session_storage_backend="memory", session_idle_timeout_seconds=60),
            clock=clock,
        )
        coordinator = runtime.coordinator("a" * 20, ACCOUNT)
        store = IntentStore(runtime.session("a" * 20).storage, runtime.cache, ACCOUNT)
        stored = store.save(
            LicensePurchaseIntent(expected_quantity=1, created_at=datetime.now(UTC))
        )
        coordinator.reconciler.start(stored)
        assert coordinator.reconciler.is_active(ResourceKind.LICENSE)

        clock.now += 61
        runtime.session("b" * 20)

        assert await coordinator.reconciler.wait(ResourceKind.LICENSE) == LoopState.CANCELLED
        assert store.load(ResourceKind.LICENSE) == stored
        await runtime.close()

    @pytest.mark.asyncio
    async def test_account_change_cancels_previous_loops(self):
        runtime = DashboardRuntime(make_settings(session_storage_backend="memory"))
        first = runtime.coordinator("a" * 20, ACCOUNT)
        store = IntentStore(runtime.session("a" * 20).storage, runtime.cache, ACCOUNT)
        first.reconciler.start(
            store.save(LicensePurchaseIntent(expected_quantity=1, created_at=datetime.now(UTC)))
        )

        runtime.coordinator("a" * 20, "other@example.com")

        assert await first.reconciler.wait(ResourceKind.LICENSE) == LoopState.CANCELLED
        await runtime.close()



class TestNotifier:
    """Tests for the per-session notification queue."""

    def test_queue_and_drain(self):
        notifier = Notifier()
        notifier.show_success("done")
        notifier.show_info("fyi")
        notifier.show_error("oops")

        drained = notifier.drain()

        assert [n.type for n in drained] == [
            NotificationType.SUCCESS,
            NotificationType.INFO,
            NotificationType.ERROR,
        ]
        assert notifier.pending() == []

    def test_bounded(self):
        notifier = Notifier(max_pending=2)
        for i in range(5):
            notifier.show_info(str(i))
        assert [n.message for n in notifier.pending()] == ["3", "4"]

    def test_listener_failure_is_absorbed(self):
        notifier = Notifier()
        seen = []

        def broken(_):
            raise RuntimeError("listener down")

        notifier.subscribe(broken)
        notifier.subscribe(seen.append)
        notifier.show_info("hello")

        assert [n.message for n in seen] == ["hello"]
