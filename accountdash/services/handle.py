"""
Auth Provider Handle Acquisition.

The auth provider package is imported out-of-band and may register itself
under different names depending on how it was loaded, with a method surface
that differs between versions. HandleAcquirer turns that into exactly one
READY or UNAVAILABLE outcome per resolution, shared by every caller.

Resolution steps (each bounded):
1. Poll the registry for the provider module.
2. Call the module's init with configuration (failure = not ready yet).
3. Probe the instance for identity/session capabilities.
4. Race the instance's readiness signal against a short timeout.
5. Poll alternate registry locations, probing each candidate.
6. Give up with UNAVAILABLE until retry() is called.
"""

import asyncio
import importlib
import inspect
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from structlog import get_logger

from accountdash.config import Settings
from accountdash.exceptions import HandleUnavailableError
from accountdash.models.domain import HandleState
from accountdash.observability.metrics import metrics
from accountdash.services.capabilities import has_any, invoke, probe, resolve_path

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]

# Slot the loader fills with the imported provider module
PRIMARY_SLOT = "auth_dom"

# Locations other load paths use, in lookup order
ALTERNATE_SLOTS: tuple[str, ...] = (
    "auth_provider",
    "auth_client",
    "AuthProvider",
    "auth_dom.provider",
    "auth_dom",
)

INIT_CAPABILITIES: tuple[str, ...] = ("init", "initialize", "create_client")

# Any of these marks a handle as usable
HANDLE_CAPABILITIES: tuple[str, ...] = (
    "get_current_member",
    "member",
    "login_with_email",
    "login_member_email_password",
)

READY_CAPABILITIES: tuple[str, ...] = ("on_ready", "ready")


class ProviderRegistry:
    """
    Process-wide named slots for the dynamically loaded provider.

    Lookups accept dotted paths; the first segment names a slot and the rest
    is followed through attributes or mapping keys.
    """

    def __init__(self) -> None:
        self._slots: dict[str, Any] = {}

    def register(self, name: str, obj: Any) -> None:
        self._slots[name] = obj
        logger.debug("provider_registered", slot=name)

    def unregister(self, name: str) -> None:
        self._slots.pop(name, None)

    def get(self, path: str) -> Any:
        head, _, rest = path.partition(".")
        obj = self._slots.get(head)
        if obj is None or not rest:
            return obj
        return resolve_path(obj, rest)

    def clear(self) -> None:
        self._slots.clear()


async def load_provider_module(registry: ProviderRegistry, module_path: str) -> bool:
    """
    Import the provider package in a worker thread and register it.

    Import errors are logged, never raised: acquisition will then run out of
    polls and report UNAVAILABLE.
    """
    if not module_path:
        logger.info("auth_provider_module_not_configured")
        return False

    try:
        module = await asyncio.to_thread(importlib.import_module, module_path)
    except Exception as exc:
        logger.error("auth_provider_import_failed", module=module_path, error=str(exc))
        return False

    default = getattr(module, "default", None)
    registry.register(PRIMARY_SLOT, default if default is not None else module)
    logger.info("auth_provider_module_loaded", module=module_path)
    return True


async def await_ready(handle: Any, timeout: float) -> bool:
    """
    Wait for the handle's readiness signal, at most `timeout` seconds.

    Returns True if the signal resolved in time. A missing signal counts as
    ready; a rejected or slow one is logged and ignored.
    """
    capability = probe(handle, READY_CAPABILITIES, allow_values=True)
    if capability is None:
        return True

    signal = capability.target
    try:
        if callable(signal) and not inspect.isawaitable(signal):
            signal = signal()
        if not inspect.isawaitable(signal):
            return True
        await asyncio.wait_for(asyncio.shield(asyncio.ensure_future(signal)), timeout)
        return True
    except TimeoutError:
        logger.debug("handle_ready_timeout", timeout_seconds=timeout)
        return False
    except Exception as exc:
        logger.warning("handle_ready_rejected", error=str(exc))
        return False


@dataclass(frozen=True)
class AcquisitionPolicy:
    """Bounds for each acquisition step."""

    module_poll_attempts: int = 10
    fallback_poll_attempts: int = 10
    poll_interval_seconds: float = 0.1
    ready_timeout_seconds: float = 1.0
    init_options: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AcquisitionPolicy":
        return cls(
            module_poll_attempts=settings.handle_module_poll_attempts,
            fallback_poll_attempts=settings.handle_fallback_poll_attempts,
            poll_interval_seconds=settings.handle_poll_interval_seconds,
            ready_timeout_seconds=settings.handle_ready_timeout_seconds,
            init_options=settings.provider_init_options,
        )


@dataclass(frozen=True)
class HandleOutcome:
    """Terminal result of one resolution."""

    state: HandleState
    handle: Any = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.state == HandleState.READY

    @classmethod
    def ready(cls, handle: Any) -> "HandleOutcome":
        return cls(state=HandleState.READY, handle=handle)

    @classmethod
    def unavailable(cls, reason: str) -> "HandleOutcome":
        return cls(state=HandleState.UNAVAILABLE, reason=reason)


class HandleAcquirer:
    """
    Single owner of the provider handle for the process lifetime.

    Concurrent acquire() calls share one in-flight resolution task; its
    outcome is cached until retry() (after UNAVAILABLE) or close().

    Usage:
        acquirer = HandleAcquirer(registry, AcquisitionPolicy.from_settings(settings))
        outcome = await acquirer.acquire()
        if outcome.ok:
            member = await outcome.handle.get_current_member()
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        policy: AcquisitionPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._registry = registry
        self._policy = policy or AcquisitionPolicy()
        self._sleep = sleep
        self._state = HandleState.UNRESOLVED
        self._outcome: HandleOutcome | None = None
        self._task: asyncio.Task[HandleOutcome] | None = None
        self.init_attempts = 0

    @property
    def state(self) -> HandleState:
        return self._state

    @property
    def handle(self) -> Any:
        return self._outcome.handle if self._outcome else None

    async def acquire(self) -> HandleOutcome:
        """Return the shared outcome, starting a resolution if none is running."""
        if self._outcome is not None:
            return self._outcome
        if self._task is None:
            self._state = HandleState.RESOLVING
            self._task = asyncio.create_task(self._resolve())
        # Shielded so one impatient caller cannot cancel everyone's resolution
        return await asyncio.shield(self._task)

    async def require(self) -> Any:
        """Return the handle or raise HandleUnavailableError."""
        outcome = await self.acquire()
        if not outcome.ok:
            raise HandleUnavailableError(outcome.reason or "provider_unavailable")
        return outcome.handle

    async def retry(self) -> HandleOutcome:
        """Start a fresh resolution after UNAVAILABLE; otherwise same as acquire()."""
        if self._state == HandleState.UNAVAILABLE:
            logger.info("handle_retry_requested")
            self._outcome = None
            self._task = None
            self._state = HandleState.UNRESOLVED
        return await self.acquire()

    async def close(self) -> None:
        """Drop the handle and cancel any resolution in flight."""
        task = self._task
        self._task = None
        self._outcome = None
        self._state = HandleState.UNRESOLVED
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _resolve(self) -> HandleOutcome:
        started = time.monotonic()
        try:
            outcome = await self._run_steps()
        except Exception as exc:
            logger.error("handle_resolution_failed", error=str(exc), exc_info=True)
            outcome = HandleOutcome.unavailable("resolution_error")

        self._outcome = outcome
        self._state = outcome.state
        duration = time.monotonic() - started
        metrics.record_handle_resolution(outcome.state.value, duration)
        if outcome.ok:
            logger.info("handle_resolved", duration_seconds=duration)
        else:
            logger.warning("handle_unavailable", reason=outcome.reason, duration_seconds=duration)
        return outcome

    async def _run_steps(self) -> HandleOutcome:
        module = await self._wait_for_module()

        instance = await self._initialize(module) if module is not None else None
        if instance is not None and has_any(instance, HANDLE_CAPABILITIES, allow_values=True):
            await await_ready(instance, self._policy.ready_timeout_seconds)
            return HandleOutcome.ready(instance)

        fallback = await self._poll_alternates()
        if fallback is not None:
            logger.info("handle_resolved_from_alternate_location")
            return HandleOutcome.ready(fallback)

        return HandleOutcome.unavailable("provider_not_found")

    async def _wait_for_module(self) -> Any:
        attempts = max(self._policy.module_poll_attempts, 1)
        for attempt in range(attempts):
            module = self._registry.get(PRIMARY_SLOT)
            if module is not None:
                return module
            if attempt < attempts - 1:
                await self._sleep(self._policy.poll_interval_seconds)
        logger.warning("auth_provider_module_missing", attempts=attempts)
        return None

    async def _initialize(self, module: Any) -> Any:
        capability = probe(module, INIT_CAPABILITIES)
        if capability is None:
            logger.warning("auth_provider_init_missing")
            return None

        self.init_attempts += 1
        try:
            instance = await invoke(capability, **self._policy.init_options)
        except Exception as exc:
            logger.error("auth_provider_init_failed", error=str(exc))
            return None

        if instance is None:
            logger.warning("auth_provider_init_returned_nothing")
        return instance

    async def _poll_alternates(self) -> Any:
        attempts = max(self._policy.fallback_poll_attempts, 1)
        for attempt in range(attempts):
            for location in ALTERNATE_SLOTS:
                candidate = self._registry.get(location)
                if candidate is not None and has_any(
                    candidate, HANDLE_CAPABILITIES, allow_values=True
                ):
                    return candidate
            if attempt < attempts - 1:
                await self._sleep(self._policy.poll_interval_seconds)
        return None
