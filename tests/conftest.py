"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fakes and fixtures for testing:
- A recording fake sleep for deterministic timing
- Snapshot builders and a scripted snapshot fetcher
- Cache, intent store, notifier and reconciler wiring
- Fake auth provider modules and handles
"""

import asyncio
import os
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

import pytest

# Set required environment variables BEFORE importing accountdash modules
os.environ.setdefault("API_BASE", "http://backend.test")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("SESSION_STORAGE_BACKEND", "memory")

from accountdash.models.domain import ResourceKind, Snapshot, SnapshotEntry
from accountdash.services.cache import SnapshotCache
from accountdash.services.intent_store import IntentStore, MemorySessionStorage
from accountdash.services.notifications import Notifier
from accountdash.services.reconciler import ReconcilePolicy, Reconciler

ACCOUNT = "user@example.com"

# ============================================================================
# Timing
# ============================================================================


class FakeSleep:
    """Records requested delays and yields to the event loop without waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)

    @property
    def total(self) -> float:
        return sum(self.calls)


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


# ============================================================================
# Snapshots
# ============================================================================


def make_snapshot(kind: ResourceKind, keys: Iterable[str]) -> Snapshot:
    """Snapshot with one active entry per key."""
    entries = tuple(SnapshotEntry(key=k, status="active", label=k) for k in keys)
    return Snapshot(kind=kind, entries=entries, fetched_at=datetime.now(UTC))


def license_keys(n: int) -> list[str]:
    return [f"KEY-{i:04d}" for i in range(n)]


class ScriptedFetcher:
    """
    Snapshot fetcher returning scripted results per kind.

    Each script item is a Snapshot (returned) or an Exception (raised). The
    last item repeats once the script runs out.
    """

    def __init__(self) -> None:
        self.scripts: dict[ResourceKind, list[Snapshot | Exception]] = {}
        self.calls: list[tuple[ResourceKind, str]] = []

    def script(self, kind: ResourceKind, *results: Snapshot | Exception) -> None:
        self.scripts[kind] = list(results)

    async def __call__(self, kind: ResourceKind, account: str) -> Snapshot:
        self.calls.append((kind, account))
        script = self.scripts.get(kind) or [Snapshot(kind=kind)]
        result = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(result, Exception):
            raise result
        return result

    def count(self, kind: ResourceKind) -> int:
        return sum(1 for k, _ in self.calls if k == kind)


@pytest.fixture
def fetcher() -> ScriptedFetcher:
    return ScriptedFetcher()


@pytest.fixture
def cache(fetcher: ScriptedFetcher) -> SnapshotCache:
    return SnapshotCache(fetcher)


@pytest.fixture
def storage() -> MemorySessionStorage:
    return MemorySessionStorage()


@pytest.fixture
def store(storage: MemorySessionStorage, cache: SnapshotCache) -> IntentStore:
    return IntentStore(storage, cache, ACCOUNT)


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()


@pytest.fixture
def policy() -> ReconcilePolicy:
    return ReconcilePolicy(
        max_cycles=30,
        interval_seconds=10.0,
        initial_delay_seconds=5.0,
        settle_delay_seconds=0.5,
    )


@pytest.fixture
def reconciler(
    store: IntentStore,
    cache: SnapshotCache,
    notifier: Notifier,
    policy: ReconcilePolicy,
    fake_sleep: FakeSleep,
) -> Reconciler:
    return Reconciler(store, cache, notifier, ACCOUNT, policy=policy, sleep=fake_sleep)


# ============================================================================
# Auth Provider Fakes
# ============================================================================


class FakeHandle:
    """Provider instance exposing the current-style method surface."""

    def __init__(self, member: Any = None) -> None:
        self.member_payload = member
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def get_current_member(self) -> Any:
        self.calls.append(("get_current_member", {}))
        return self.member_payload

    async def login_member_email_password(self, email: str, password: str) -> Any:
        self.calls.append(("login_member_email_password", {"email": email}))
        if password != "correct-horse":
            return {"errors": [{"message": "Invalid credentials", "code": "invalid-credentials"}]}
        return {"data": {"member": {"id": "mem_1"}}}

    async def logout(self) -> None:
        self.calls.append(("logout", {}))
        self.member_payload = None


class FakeProviderModule:
    """Provider package whose init() returns a FakeHandle."""

    def __init__(self, handle: Any = None, fail_init: bool = False) -> None:
        self.handle = handle if handle is not None else FakeHandle()
        self.fail_init = fail_init
        self.init_calls: list[dict[str, Any]] = []

    async def init(self, **options: Any) -> Any:
        self.init_calls.append(options)
        await asyncio.sleep(0)
        if self.fail_init:
            raise RuntimeError("init exploded")
        return self.handle


def member_payload(email: str = ACCOUNT, member_id: str = "mem_1") -> dict[str, Any]:
    """Member as the provider returns it: wrapped in a data envelope."""
    return {"data": {"id": member_id, "auth": {"email": email}}}
