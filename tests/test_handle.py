"""
Tests for auth provider handle acquisition.

Covers fan-in of concurrent callers, late registration, init failures,
alternate locations, readiness racing and the UNAVAILABLE path.
"""

import asyncio

import pytest
from conftest import FakeHandle, FakeProviderModule, FakeSleep

from accountdash.exceptions import HandleUnavailableError
from accountdash.models.domain import HandleState
from accountdash.services.auth import AuthService
from accountdash.services.handle import (
    PRIMARY_SLOT,
    AcquisitionPolicy,
    HandleAcquirer,
    ProviderRegistry,
    await_ready,
    load_provider_module,
)

FAST_POLICY = AcquisitionPolicy(
    module_poll_attempts=3,
    fallback_poll_attempts=2,
    poll_interval_seconds=0.1,
    ready_timeout_seconds=0.05,
)


class TestProviderRegistry:
    """Tests for ProviderRegistry."""

    def test_register_and_get(self):
        registry = ProviderRegistry()
        registry.register("auth_dom", "module")
        assert registry.get("auth_dom") == "module"

    def test_dotted_lookup(self):
        registry = ProviderRegistry()
        handle = FakeHandle()
        registry.register("auth_dom", {"provider": handle})
        assert registry.get("auth_dom.provider") is handle

    def test_missing(self):
        registry = ProviderRegistry()
        assert registry.get("auth_dom") is None
        assert registry.get("auth_dom.provider") is None

    def test_unregister_and_clear(self):
        registry = ProviderRegistry()
        registry.register("a", 1)
        registry.register("b", 2)
        registry.unregister("a")
        assert registry.get("a") is None
        registry.clear()
        assert registry.get("b") is None


class TestLoadProviderModule:
    """Tests for load_provider_module()."""

    @pytest.mark.asyncio
    async def test_registers_imported_module(self):
        registry = ProviderRegistry()
        loaded = await load_provider_module(registry, "json")
        assert loaded is True
        import json

        assert registry.get(PRIMARY_SLOT) is json

    @pytest.mark.asyncio
    async def test_import_failure_registers_nothing(self):
        registry = ProviderRegistry()
        loaded = await load_provider_module(registry, "definitely_not_a_real_provider_pkg")
        assert loaded is False
        assert registry.get(PRIMARY_SLOT) is None

    @pytest.mark.asyncio
    async def test_empty_path(self):
        registry = ProviderRegistry()
        assert await load_provider_module(registry, "") is False


class TestHandleAcquirer:
    """Tests for HandleAcquirer resolution."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_initialization(self, fake_sleep):
        """Many simultaneous acquire() calls initialize the provider exactly once."""
        registry = ProviderRegistry()
        module = FakeProviderModule()
        registry.register(PRIMARY_SLOT, module)
        acquirer = HandleAcquirer(registry, FAST_POLICY, sleep=fake_sleep)

        outcomes = await asyncio.gather(*(acquirer.acquire() for _ in range(10)))

        assert all(o.ok for o in outcomes)
        assert all(o.handle is module.handle for o in outcomes)
        assert len(module.init_calls) == 1
        assert acquirer.init_attempts == 1
        assert acquirer.state == HandleState.READY

    @pytest.mark.asyncio
    async def test_outcome_is_cached(self, fake_sleep):
        registry = ProviderRegistry()
        module = FakeProviderModule()
        registry.register(PRIMARY_SLOT, module)
        acquirer = HandleAcquirer(registry, FAST_POLICY, sleep=fake_sleep)

        first = await acquirer.acquire()
        second = await acquirer.acquire()

        assert first is second
        assert len(module.init_calls) == 1

    @pytest.mark.asyncio
    async def test_init_receives_configuration(self, fake_sleep):
        registry = ProviderRegistry()
        module = FakeProviderModule()
        registry.register(PRIMARY_SLOT, module)
        policy = AcquisitionPolicy(init_options={"public_key": "pk_test", "use_cookies": True})
        acquirer = HandleAcquirer(registry, policy, sleep=fake_sleep)

        await acquirer.acquire()

        assert module.init_calls == [{"public_key": "pk_test", "use_cookies": True}]

    @pytest.mark.asyncio
    async def test_late_registration_is_picked_up(self):
        """The module appearing during polling is found on a later poll."""
        registry = ProviderRegistry()
        module = FakeProviderModule()
        delays: list[float] = []

        async def sleep(seconds: float) -> None:
            delays.append(seconds)
            if len(delays) == 2:
                registry.register(PRIMARY_SLOT, module)

        acquirer = HandleAcquirer(registry, AcquisitionPolicy(module_poll_attempts=5), sleep=sleep)
        outcome = await acquirer.acquire()

        assert outcome.ok
        assert delays == [0.1, 0.1]

    @pytest.mark.asyncio
    async def test_never_appearing_provider_is_unavailable(self, fake_sleep):
        """Bounded polling ends in UNAVAILABLE instead of hanging."""
        acquirer = HandleAcquirer(ProviderRegistry(), FAST_POLICY, sleep=fake_sleep)

        outcome = await acquirer.acquire()

        assert outcome.ok is False
        assert outcome.state == HandleState.UNAVAILABLE
        assert outcome.reason == "provider_not_found"
        assert acquirer.state == HandleState.UNAVAILABLE
        # 2 sleeps between 3 module polls, 1 between 2 fallback polls
        assert fake_sleep.calls == [0.1, 0.1, 0.1]

    @pytest.mark.asyncio
    async def test_session_check_on_unavailable_provider_fails_typed(self, fake_sleep):
        acquirer = HandleAcquirer(ProviderRegistry(), FAST_POLICY, sleep=fake_sleep)
        auth = AuthService(acquirer)

        result = await auth.check_session()

        assert result.ok is False
        assert result.reason == "provider_not_found"

    @pytest.mark.asyncio
    async def test_failed_init_falls_back_to_alternate_location(self, fake_sleep):
        registry = ProviderRegistry()
        registry.register(PRIMARY_SLOT, FakeProviderModule(fail_init=True))
        fallback = FakeHandle()
        registry.register("auth_provider", fallback)
        acquirer = HandleAcquirer(registry, FAST_POLICY, sleep=fake_sleep)

        outcome = await acquirer.acquire()

        assert outcome.ok
        assert outcome.handle is fallback
        assert acquirer.init_attempts == 1

    @pytest.mark.asyncio
    async def test_nested_alternate_location(self, fake_sleep):
        registry = ProviderRegistry()
        nested = FakeHandle()
        registry.register("auth_dom", {"provider": nested})
        acquirer = HandleAcquirer(registry, FAST_POLICY, sleep=fake_sleep)

        outcome = await acquirer.acquire()

        assert outcome.ok
        assert outcome.handle is nested

    @pytest.mark.asyncio
    async def test_instance_without_capabilities_is_not_ready(self, fake_sleep):
        registry = ProviderRegistry()
        registry.register(PRIMARY_SLOT, FakeProviderModule(handle=object()))
        acquirer = HandleAcquirer(registry, FAST_POLICY, sleep=fake_sleep)

        outcome = await acquirer.acquire()

        assert outcome.state == HandleState.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_require_raises_when_unavailable(self, fake_sleep):
        acquirer = HandleAcquirer(ProviderRegistry(), FAST_POLICY, sleep=fake_sleep)

        with pytest.raises(HandleUnavailableError) as exc_info:
            await acquirer.require()

        assert exc_info.value.reason == "provider_not_found"

    @pytest.mark.asyncio
    async def test_retry_after_unavailable(self, fake_sleep):
        registry = ProviderRegistry()
        acquirer = HandleAcquirer(registry, FAST_POLICY, sleep=fake_sleep)
        assert (await acquirer.acquire()).ok is False

        registry.register(PRIMARY_SLOT, FakeProviderModule())
        outcome = await acquirer.retry()

        assert outcome.ok
        assert acquirer.state == HandleState.READY

    @pytest.mark.asyncio
    async def test_retry_when_ready_keeps_handle(self, fake_sleep):
        registry = ProviderRegistry()
        module = FakeProviderModule()
        registry.register(PRIMARY_SLOT, module)
        acquirer = HandleAcquirer(registry, FAST_POLICY, sleep=fake_sleep)
        await acquirer.acquire()

        await acquirer.retry()

        assert len(module.init_calls) == 1

    @pytest.mark.asyncio
    async def test_close_resets(self, fake_sleep):
        registry = ProviderRegistry()
        registry.register(PRIMARY_SLOT, FakeProviderModule())
        acquirer = HandleAcquirer(registry, FAST_POLICY, sleep=fake_sleep)
        await acquirer.acquire()

        await acquirer.close()

        assert acquirer.state == HandleState.UNRESOLVED
        assert acquirer.handle is None

    @pytest.mark.asyncio
    async def test_slow_ready_signal_does_not_block_resolution(self, fake_sleep):
        """A readiness signal that never fires only costs the ready timeout."""

        class NeverReady(FakeHandle):
            def __init__(self) -> None:
                super().__init__()
                self.on_ready = asyncio.get_running_loop().create_future()

        handle = NeverReady()
        registry = ProviderRegistry()
        registry.register(PRIMARY_SLOT, FakeProviderModule(handle=handle))
        acquirer = HandleAcquirer(registry, FAST_POLICY, sleep=fake_sleep)

        outcome = await acquirer.acquire()

        assert outcome.ok
        assert outcome.handle is handle


class TestAwaitReady:
    """Tests for await_ready()."""

    @pytest.mark.asyncio
    async def test_missing_signal_counts_as_ready(self):
        assert await await_ready(FakeHandle(), timeout=0.01) is True

    @pytest.mark.asyncio
    async def test_resolved_signal(self):
        class Ready:
            async def on_ready(self):
                return True

        assert await await_ready(Ready(), timeout=1.0) is True

    @pytest.mark.asyncio
    async def test_pending_signal_times_out(self):
        class Pending:
            def __init__(self, future):
                self.ready = future

        future = asyncio.get_running_loop().create_future()
        assert await await_ready(Pending(future), timeout=0.01) is False
        assert not future.cancelled()

    @pytest.mark.asyncio
    async def test_rejected_signal(self):
        class Rejecting:
            async def on_ready(self):
                raise RuntimeError("rejected")

        assert await await_ready(Rejecting(), timeout=1.0) is False
