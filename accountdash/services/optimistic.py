"""
Optimistic updates of cached snapshots.

Right after a purchase intent is recorded, the license snapshot gets one
"Processing..." row per expected key so the dashboard reflects the purchase
immediately. Placeholders are never counted as real licenses and vanish on
the next successful refetch, which replaces the whole snapshot.
Purchased domains get no placeholders: their identity is unknown until
confirmed.

Direct site edits are optimistic too. A removed site is shown as inactive
and an added one as a pending row; callers keep the previous snapshot and
put it back when the backend rejects the edit.
"""

import time
from dataclasses import replace
from uuid import uuid4

from structlog import get_logger

from accountdash.models.domain import ResourceKind, Snapshot, SnapshotEntry
from accountdash.services.cache import SnapshotCache

logger = get_logger(__name__)

PLACEHOLDER_STATUS = "processing"
PLACEHOLDER_LABEL = "Processing..."
PENDING_SITE_STATUS = "pending"


def make_placeholders(quantity: int, billing_period: str | None = None) -> tuple[SnapshotEntry, ...]:
    """Build `quantity` placeholder rows with unique synthetic keys."""
    return tuple(
        SnapshotEntry(
            key=f"processing-{uuid4().hex}",
            status=PLACEHOLDER_STATUS,
            label=PLACEHOLDER_LABEL,
            billing_period=billing_period,
            placeholder=True,
        )
        for _ in range(quantity)
    )


def add_license_placeholders(
    cache: SnapshotCache, account: str, quantity: int, billing_period: str | None = None
) -> Snapshot | None:
    """Merge placeholder rows into the cached license snapshot (seeding one if cold)."""
    if quantity < 1:
        return cache.get(ResourceKind.LICENSE, account)

    placeholders = make_placeholders(quantity, billing_period)
    cold = cache.get(ResourceKind.LICENSE, account) is None

    def merge(current: Snapshot | None) -> Snapshot:
        if current is None:
            return Snapshot(kind=ResourceKind.LICENSE, entries=placeholders)
        return current.with_entries(placeholders + current.entries)

    snapshot = cache.mutate(ResourceKind.LICENSE, account, merge)
    if cold:
        # A placeholder-only snapshot is not server truth; the next read must fetch
        cache.invalidate(ResourceKind.LICENSE, account)
    logger.info("license_placeholders_added", quantity=quantity)
    return snapshot


def remove_license_placeholders(cache: SnapshotCache, account: str) -> Snapshot | None:
    """Drop placeholder rows, leaving server-reported licenses untouched."""

    def strip(current: Snapshot | None) -> Snapshot | None:
        if current is None or not current.placeholders:
            return None
        return current.with_entries(current.authoritative)

    snapshot = cache.mutate(ResourceKind.LICENSE, account, strip)
    if snapshot is not None:
        logger.info("license_placeholders_removed")
    return snapshot


def mark_site_status(
    cache: SnapshotCache, account: str, site: str, status: str
) -> Snapshot | None:
    """Set the status of a cached domain row; no-op when the row is unknown."""
    target = site.strip().lower()

    def update(current: Snapshot | None) -> Snapshot | None:
        if current is None:
            return None
        entries = tuple(
            replace(entry, status=status) if entry.key.lower() == target else entry
            for entry in current.entries
        )
        if entries == current.entries:
            return None
        return current.with_entries(entries)

    return cache.mutate(ResourceKind.DOMAIN, account, update)


def add_pending_site(cache: SnapshotCache, account: str, site: str) -> Snapshot | None:
    """Show a just-added site as a pending row until the backend lists it."""
    domain = site.strip()
    pending = SnapshotEntry(
        key=domain,
        status=PENDING_SITE_STATUS,
        label=domain,
        site=domain,
        created_at=int(time.time()),
        placeholder=True,
    )

    def merge(current: Snapshot | None) -> Snapshot | None:
        if current is None:
            return None
        if any(entry.key.lower() == domain.lower() for entry in current.entries):
            return None
        return current.with_entries(current.entries + (pending,))

    return cache.mutate(ResourceKind.DOMAIN, account, merge)
