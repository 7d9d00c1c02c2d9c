"""
Ranked capability probes for objects whose method surface varies by version.

A capability is an operation looked up by name on a handle. Callers pass a
ranked list of equivalent names and get the first one present, so every
operation shares one lookup instead of its own fallback chain.
"""

import inspect
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Capability:
    """An operation found on a handle."""

    name: str
    target: Any

    @property
    def is_callable(self) -> bool:
        return callable(self.target)


def _lookup(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    try:
        return getattr(obj, name, None)
    except Exception:
        # Some SDK proxies raise on unknown attributes
        return None


def resolve_path(obj: Any, path: str) -> Any:
    """Follow a dotted path ("provider_dom.provider") through attributes or keys."""
    current = obj
    for part in path.split("."):
        current = _lookup(current, part)
        if current is None:
            return None
    return current


def probe(
    obj: Any, ranked_names: Sequence[str], allow_values: bool = False
) -> Capability | None:
    """
    Return the first capability from ranked_names present on obj.

    Only callables count unless allow_values is set, in which case any
    non-None attribute matches (some SDKs expose the member as a property).
    """
    for name in ranked_names:
        target = _lookup(obj, name)
        if target is None:
            continue
        if callable(target) or allow_values:
            return Capability(name=name, target=target)
    return None


def has_any(obj: Any, ranked_names: Sequence[str], allow_values: bool = False) -> bool:
    """Return True if obj exposes any of the ranked capabilities."""
    return probe(obj, ranked_names, allow_values=allow_values) is not None


async def invoke(capability: Capability, *args: Any, **kwargs: Any) -> Any:
    """Call a capability (awaiting the result if needed); value capabilities are returned as-is."""
    if not capability.is_callable:
        return capability.target
    result = capability.target(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result
