"""
Persisted Intent Store - pending purchases that must survive the checkout redirect.

One record per resource kind lives in storage scoped to a dashboard session
(a browser tab). A new intent of the same kind overwrites the old one. Each
record carries the baseline resource count captured when it was saved;
that count defines which resources are "new" after checkout.

A missing or failing storage backend is benign: intents simply read as
absent, and only the post-checkout feedback is lost.
"""

import json
import os
import re
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field, ValidationError
from structlog import get_logger

from accountdash.models.domain import (
    DomainPurchaseIntent,
    LicensePurchaseIntent,
    PendingIntent,
    ResourceKind,
    StoredIntent,
)
from accountdash.services.cache import SnapshotCache

logger = get_logger(__name__)

STORAGE_KEYS: dict[ResourceKind, str] = {
    ResourceKind.LICENSE: "pending_purchase:license",
    ResourceKind.DOMAIN: "pending_purchase:domain",
}

_SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


class SessionStorage(Protocol):
    """String key/value storage scoped to one dashboard session."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemorySessionStorage:
    """Process-local storage; survives navigation but not a restart."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class FileSessionStorage:
    """
    One JSON document per session under `directory`.

    Writes go through a temporary file and an atomic rename so a crash never
    leaves a half-written document.
    """

    def __init__(self, directory: str | Path, session_id: str) -> None:
        if not _SESSION_ID_PATTERN.match(session_id):
            raise ValueError(f"Invalid session id: {session_id!r}")
        self.directory = Path(directory)
        self.path = self.directory / f"{session_id}.json"

    def _read(self) -> dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        data = json.loads(raw)
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, items: dict[str, str]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        if not items:
            self.path.unlink(missing_ok=True)
            return
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(items, handle)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def get_item(self, key: str) -> str | None:
        return self._read().get(key)

    def set_item(self, key: str, value: str) -> None:
        items = self._read()
        items[key] = value
        self._write(items)

    def remove_item(self, key: str) -> None:
        items = self._read()
        if items.pop(key, None) is not None:
            self._write(items)


class StoredIntentRecord(BaseModel):
    """Persisted layout of one pending purchase."""

    kind: ResourceKind
    account: str
    baseline: int = Field(..., ge=0)
    created_at: datetime
    expected_quantity: int | None = Field(None, ge=1)
    expected_domains: list[str] | None = None
    expected_count: int | None = Field(None, ge=1)

    @classmethod
    def from_stored(cls, stored: StoredIntent, account: str) -> "StoredIntentRecord":
        intent = stored.intent
        if isinstance(intent, LicensePurchaseIntent):
            return cls(
                kind=ResourceKind.LICENSE,
                account=account,
                baseline=stored.baseline,
                created_at=intent.created_at,
                expected_quantity=intent.expected_quantity,
            )
        return cls(
            kind=ResourceKind.DOMAIN,
            account=account,
            baseline=stored.baseline,
            created_at=intent.created_at,
            expected_domains=list(intent.expected_domains),
            expected_count=intent.expected_count,
        )

    def to_stored(self) -> StoredIntent:
        """Rebuild the domain object; raises ValueError on inconsistent records."""
        intent: PendingIntent
        if self.kind == ResourceKind.LICENSE:
            if self.expected_quantity is None:
                raise ValueError("License record without expected_quantity")
            intent = LicensePurchaseIntent(
                expected_quantity=self.expected_quantity, created_at=self.created_at
            )
        else:
            if not self.expected_domains or self.expected_count is None:
                raise ValueError("Domain record without expected domains")
            intent = DomainPurchaseIntent(
                expected_domains=tuple(self.expected_domains),
                expected_count=self.expected_count,
                created_at=self.created_at,
            )
        return StoredIntent(intent=intent, baseline=self.baseline)


class IntentStore:
    """
    save / load / clear of pending purchases for one session and account.

    Usage:
        store = IntentStore(storage, cache, "user@example.com")
        store.save(LicensePurchaseIntent(expected_quantity=3, created_at=now))
        pending = store.load(ResourceKind.LICENSE)
    """

    def __init__(
        self, storage: SessionStorage | None, cache: SnapshotCache, account: str
    ) -> None:
        self._storage = storage
        self._cache = cache
        self.account = account

    @property
    def available(self) -> bool:
        return self._storage is not None

    def baseline_for(self, kind: ResourceKind) -> int:
        """Count of real resources in the current snapshot (0 on a cold cache)."""
        snapshot = self._cache.get(kind, self.account)
        return snapshot.count if snapshot is not None else 0

    def save(self, intent: PendingIntent) -> StoredIntent:
        """Persist `intent` with a baseline captured from the cache right now."""
        stored = StoredIntent(intent=intent, baseline=self.baseline_for(intent.kind))
        if self._storage is None:
            logger.warning("intent_storage_unavailable", kind=intent.kind.value)
            return stored

        record = StoredIntentRecord.from_stored(stored, self.account)
        try:
            self._storage.set_item(STORAGE_KEYS[intent.kind], record.model_dump_json())
        except (OSError, ValueError) as exc:
            logger.error("intent_save_failed", kind=intent.kind.value, error=str(exc))
            return stored

        logger.info(
            "intent_saved",
            kind=intent.kind.value,
            expected=intent.expected_total,
            baseline=stored.baseline,
        )
        return stored

    def load(self, kind: ResourceKind) -> StoredIntent | None:
        if self._storage is None:
            return None

        key = STORAGE_KEYS[kind]
        try:
            raw = self._storage.get_item(key)
        except (OSError, ValueError) as exc:
            logger.error("intent_load_failed", kind=kind.value, error=str(exc))
            return None
        if raw is None:
            return None

        try:
            record = StoredIntentRecord.model_validate_json(raw)
            if record.kind != kind:
                raise ValueError(f"Record kind {record.kind.value} stored under {key}")
            stored = record.to_stored()
        except (ValidationError, ValueError) as exc:
            logger.warning("intent_record_corrupt", kind=kind.value, error=str(exc))
            self.clear(kind)
            return None

        if record.account != self.account:
            logger.info("intent_belongs_to_other_account", kind=kind.value)
            return None
        return stored

    def clear(self, kind: ResourceKind) -> None:
        if self._storage is None:
            return
        try:
            self._storage.remove_item(STORAGE_KEYS[kind])
        except (OSError, ValueError) as exc:
            logger.error("intent_clear_failed", kind=kind.value, error=str(exc))
            return
        logger.debug("intent_cleared", kind=kind.value)

    def discard(self, stored: StoredIntent) -> bool:
        """Clear stored.kind only if it still holds this intent; True if cleared."""
        current = self.load(stored.kind)
        if current is None or current.intent != stored.intent:
            return False
        self.clear(stored.kind)
        return True

    def clear_all(self) -> None:
        for kind in ResourceKind:
            self.clear(kind)
