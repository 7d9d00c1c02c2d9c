"""
Bounded Polling Reconciler.

After the user comes back from checkout, the backend confirms the purchase
eventually and never pushes. A ReconcileLoop drives one pending intent to a
terminal state by repeatedly refetching the resource kind and comparing it
with the expected delta:

    IDLE -> SCHEDULED -> IN_FLIGHT -> SCHEDULED -> ... -> CONVERGED
                                                      +-> EXHAUSTED
                                                      +-> CANCELLED

Cycles are strictly sequential. A failed cycle (network, timeout, bad
payload) counts as "not converged yet" and never ends the loop early.
Exhaustion is not an error: the purchase is assumed to have gone through
and only the confirmation timed out.

The Reconciler keeps at most one loop per resource kind; starting a new one
cancels the old. A loop whose stored intent was replaced or cleared treats
the next convergence check as already handled and stops quietly, without
notifying or touching the newer intent.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from structlog import get_logger

from accountdash.config import Settings
from accountdash.models.domain import (
    DomainPurchaseIntent,
    LicensePurchaseIntent,
    PendingIntent,
    ResourceKind,
    Snapshot,
    StoredIntent,
)
from accountdash.observability.metrics import metrics
from accountdash.observability.tracing import trace_operation
from accountdash.services.cache import SnapshotCache
from accountdash.services.intent_store import IntentStore
from accountdash.services.matching import count_matched
from accountdash.services.notifications import Notifier

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class LoopState(str, Enum):
    """States of one reconciliation loop."""

    IDLE = "idle"
    SCHEDULED = "scheduled"
    IN_FLIGHT = "in_flight"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({LoopState.CONVERGED, LoopState.EXHAUSTED, LoopState.CANCELLED})


@dataclass(frozen=True)
class ReconcilePolicy:
    """Timing contract of the post-checkout polling."""

    max_cycles: int = 30
    interval_seconds: float = 10.0
    initial_delay_seconds: float = 5.0
    settle_delay_seconds: float = 0.5

    def __post_init__(self) -> None:
        if self.max_cycles < 1:
            raise ValueError(f"max_cycles must be at least 1: {self.max_cycles}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReconcilePolicy":
        return cls(
            max_cycles=settings.reconcile_max_cycles,
            interval_seconds=settings.reconcile_interval_seconds,
            initial_delay_seconds=settings.reconcile_initial_delay_seconds,
            settle_delay_seconds=settings.reconcile_settle_delay_seconds,
        )


# ============================================================================
# Convergence
# ============================================================================


def license_converged(snapshot: Snapshot, stored: StoredIntent) -> bool:
    intent = stored.intent
    assert isinstance(intent, LicensePurchaseIntent)
    return snapshot.count >= stored.baseline + intent.expected_quantity


def domain_converged(snapshot: Snapshot, stored: StoredIntent) -> bool:
    """Enough typed domains matched, or simply more domains than before."""
    intent = stored.intent
    assert isinstance(intent, DomainPurchaseIntent)
    matched = count_matched(intent.expected_domains, snapshot.keys)
    return matched >= intent.expected_count or snapshot.count > stored.baseline


def is_converged(snapshot: Snapshot | None, stored: StoredIntent) -> bool:
    if snapshot is None:
        return False
    if isinstance(stored.intent, LicensePurchaseIntent):
        return license_converged(snapshot, stored)
    return domain_converged(snapshot, stored)


def success_message(intent: PendingIntent) -> str:
    if isinstance(intent, LicensePurchaseIntent):
        return f"Successfully added {intent.expected_quantity} license key(s)!"
    return f"Successfully added {intent.expected_count} domain(s)!"


def still_processing_message(kind: ResourceKind) -> str:
    noun = "license keys" if kind == ResourceKind.LICENSE else "domains"
    return f"Your purchase is still processing. New {noun} will appear shortly."


# ============================================================================
# Loop
# ============================================================================


class ReconcileLoop:
    """Drives one stored intent to CONVERGED, EXHAUSTED or CANCELLED."""

    def __init__(
        self,
        stored: StoredIntent,
        account: str,
        store: IntentStore,
        cache: SnapshotCache,
        notifier: Notifier,
        policy: ReconcilePolicy,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.stored = stored
        self.account = account
        self._store = store
        self._cache = cache
        self._notifier = notifier
        self._policy = policy
        self._sleep = sleep
        self.state = LoopState.IDLE
        self.cycles = 0

    @property
    def kind(self) -> ResourceKind:
        return self.stored.kind

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    async def run(self) -> LoopState:
        metrics.reconcile_loops_active.labels(kind=self.kind.value).inc()
        try:
            return await self._run()
        except asyncio.CancelledError:
            self.state = LoopState.CANCELLED
            metrics.record_reconcile_outcome(self.kind.value, "superseded")
            logger.info("reconcile_superseded", kind=self.kind.value, cycles=self.cycles)
            raise
        finally:
            metrics.reconcile_loops_active.labels(kind=self.kind.value).dec()

    async def _run(self) -> LoopState:
        logger.info(
            "reconcile_started",
            kind=self.kind.value,
            baseline=self.stored.baseline,
            expected=self.stored.intent.expected_total,
        )
        self.state = LoopState.SCHEDULED
        await self._sleep(self._policy.initial_delay_seconds)

        while True:
            if not self._still_governing():
                return self._finish(LoopState.CANCELLED, "already_handled")

            self.cycles += 1
            self.state = LoopState.IN_FLIGHT
            converged = await self._run_cycle()

            # The intent may have been replaced or cleared while the cycle was in flight
            if not self._still_governing():
                return self._finish(LoopState.CANCELLED, "already_handled")

            if converged:
                self._notifier.show_success(success_message(self.stored.intent))
                self._store.discard(self.stored)
                return self._finish(LoopState.CONVERGED, "converged")

            if self.cycles >= self._policy.max_cycles:
                self._notifier.show_info(still_processing_message(self.kind))
                self._store.discard(self.stored)
                return self._finish(LoopState.EXHAUSTED, "exhausted")

            self.state = LoopState.SCHEDULED
            await self._sleep(self._policy.interval_seconds)

    def _still_governing(self) -> bool:
        """True while the stored intent is still the one this loop was started for."""
        current = self._store.load(self.kind)
        return current is not None and current.intent == self.stored.intent

    async def _run_cycle(self) -> bool:
        with trace_operation("reconcile_cycle", kind=self.kind.value, cycle=self.cycles) as span:
            try:
                await self._cache.invalidate_and_refetch(self.kind, self.account)
                await self._sleep(self._policy.settle_delay_seconds)
                snapshot = self._cache.get(self.kind, self.account)
                converged = is_converged(snapshot, self.stored)
            except Exception as exc:
                metrics.record_reconcile_cycle(self.kind.value, "error")
                metrics.record_error(type(exc).__name__, "reconcile_cycle")
                logger.warning(
                    "reconcile_cycle_failed",
                    kind=self.kind.value,
                    cycle=self.cycles,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                span.set_attribute("error", True)
                return False

            span.set_attribute("converged", converged)
            metrics.record_reconcile_cycle(self.kind.value, "converged" if converged else "pending")
            logger.debug(
                "reconcile_cycle_completed",
                kind=self.kind.value,
                cycle=self.cycles,
                count=snapshot.count if snapshot else 0,
                converged=converged,
            )
            return converged

    def _finish(self, state: LoopState, outcome: str) -> LoopState:
        self.state = state
        metrics.record_reconcile_outcome(self.kind.value, outcome)
        logger.info("reconcile_finished", kind=self.kind.value, outcome=outcome, cycles=self.cycles)
        return state


class Reconciler:
    """
    Owns at most one running ReconcileLoop per resource kind.

    Usage:
        reconciler = Reconciler(store, cache, notifier, account, policy)
        reconciler.start(store.load(ResourceKind.LICENSE))
    """

    def __init__(
        self,
        store: IntentStore,
        cache: SnapshotCache,
        notifier: Notifier,
        account: str,
        policy: ReconcilePolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._store = store
        self._cache = cache
        self._notifier = notifier
        self.account = account
        self._policy = policy or ReconcilePolicy()
        self._sleep = sleep
        self._loops: dict[ResourceKind, ReconcileLoop] = {}
        self._tasks: dict[ResourceKind, asyncio.Task[LoopState]] = {}

    def start(self, stored: StoredIntent) -> ReconcileLoop:
        """Start a loop for stored.kind, superseding any loop already running for it."""
        kind = stored.kind
        previous = self._tasks.get(kind)
        if previous is not None and not previous.done():
            logger.info("reconcile_superseding", kind=kind.value)
            previous.cancel()

        loop = ReconcileLoop(
            stored=stored,
            account=self.account,
            store=self._store,
            cache=self._cache,
            notifier=self._notifier,
            policy=self._policy,
            sleep=self._sleep,
        )
        task = asyncio.create_task(loop.run(), name=f"reconcile-{kind.value}")
        task.add_done_callback(lambda t, k=kind, owned=loop: self._forget(k, t, owned))
        self._loops[kind] = loop
        self._tasks[kind] = task
        return loop

    def _forget(
        self, kind: ResourceKind, task: asyncio.Task[LoopState], loop: ReconcileLoop
    ) -> None:
        if self._tasks.get(kind) is task:
            del self._tasks[kind]
        if task.cancelled() and not loop.finished:
            # Cancelled before its first step
            loop.state = LoopState.CANCELLED
        if not task.cancelled() and task.exception() is not None:
            logger.error("reconcile_loop_crashed", kind=kind.value, error=str(task.exception()))

    def loop(self, kind: ResourceKind) -> ReconcileLoop | None:
        """The most recently started loop for kind, running or finished."""
        return self._loops.get(kind)

    def is_active(self, kind: ResourceKind) -> bool:
        task = self._tasks.get(kind)
        return task is not None and not task.done()

    def active_kinds(self) -> list[ResourceKind]:
        return [kind for kind in ResourceKind if self.is_active(kind)]

    async def wait(self, kind: ResourceKind) -> LoopState | None:
        """Wait for the current loop of kind to finish and return its final state."""
        task = self._tasks.get(kind)
        if task is None:
            loop = self._loops.get(kind)
            return loop.state if loop else None
        try:
            return await task
        except asyncio.CancelledError:
            return LoopState.CANCELLED

    def cancel(self) -> None:
        """Cancel every running loop without waiting for it to unwind."""
        for task in self._tasks.values():
            if not task.done():
                task.cancel()

    async def close(self) -> None:
        """Cancel every running loop (shutdown)."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
