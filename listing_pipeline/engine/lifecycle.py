"""State transitions, age-based purge, retention and maintenance sweeps."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterable

import structlog

from ..config import DedupConfig, LifecycleConfig
from ..infra.storage import CollectionStore
from ..models import ListingRecord, ListingState, utcnow
from .dedup import DuplicateDetector, Thresholds, dedupe_by_id, dedupe_by_similarity

# Transitions only move forward, so the copy in the later state is the newest.
SWEEP_PRECEDENCE = (
    ListingState.SOLD,
    ListingState.ARCHIVED,
    ListingState.ACTIVE,
    ListingState.PENDING,
)
PURGE_HISTORY_LIMIT = 30


def replace_by_id(
    existing: list[ListingRecord], incoming: list[ListingRecord]
) -> list[ListingRecord]:
    """Merge ``incoming`` into ``existing``; an incoming copy replaces a stale one in place."""

    replacements = {record.id: record for record in incoming}
    merged: list[ListingRecord] = []
    seen: set[str] = set()
    for record in existing:
        if record.id in seen:
            continue
        seen.add(record.id)
        merged.append(replacements.get(record.id, record))
    for record in incoming:
        if record.id not in seen:
            seen.add(record.id)
            merged.append(replacements[record.id])
    return merged


@dataclass(slots=True)
class PurgeResult:
    total_active: int = 0
    total_pending: int = 0
    purged_active: int = 0
    purged_pending: int = 0

    @property
    def moved_to_archived(self) -> int:
        return self.purged_active + self.purged_pending


@dataclass(slots=True)
class RetentionResult:
    expired: int = 0
    trimmed: int = 0

    @property
    def removed(self) -> int:
        return self.expired + self.trimmed


@dataclass(slots=True)
class SweepResult:
    removed_within: dict[str, int] = field(default_factory=dict)
    removed_across: int = 0
    removed_similar: int = 0

    @property
    def total(self) -> int:
        return sum(self.removed_within.values()) + self.removed_across + self.removed_similar


class LifecycleManager:
    """Owns every mutation of the per-state collections outside ingestion."""

    def __init__(
        self,
        store: CollectionStore,
        config: LifecycleConfig | None = None,
        dedup_config: DedupConfig | None = None,
        *,
        purge_record_path: Path | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.config = config or LifecycleConfig()
        self.dedup_config = dedup_config or DedupConfig()
        self.purge_record_path = purge_record_path or store.data_dir / "purging" / "last-purge.json"
        self.logger = logger or structlog.get_logger("listing_pipeline").bind(component="lifecycle")
        self.now = now

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def approve_all_pending(self) -> int:
        pending = self.store.read_collection(ListingState.PENDING)
        if not pending:
            self.logger.info("approve_completed", approved=0)
            return 0
        approved = self._move(pending, ListingState.ACTIVE, self.now())
        self.store.write_collection(ListingState.PENDING, [])
        self.logger.info("approve_completed", approved=len(approved))
        return len(approved)

    def approve(self, ids: Iterable[str]) -> list[str]:
        wanted = set(ids)
        pending = self.store.read_collection(ListingState.PENDING)
        selected = [record for record in pending if record.id in wanted]
        if not selected:
            return []
        self._move(selected, ListingState.ACTIVE, self.now())
        self.store.write_collection(
            ListingState.PENDING, [record for record in pending if record.id not in wanted]
        )
        approved = [record.id for record in selected]
        for listing_id in approved:
            self.logger.info("listing_approved", listing_id=listing_id)
        return approved

    def mark_sold(self, ids: Iterable[str]) -> list[str]:
        """Record completed purchases: active listings move to ``sold``."""

        wanted = set(ids)
        active = self.store.read_collection(ListingState.ACTIVE)
        selected = [record for record in active if record.id in wanted]
        if selected:
            now = self.now()
            for record in selected:
                record.sold_at = now
            self._move(selected, ListingState.SOLD, now)
            self.store.write_collection(
                ListingState.ACTIVE, [record for record in active if record.id not in wanted]
            )
        sold = [record.id for record in selected]
        for listing_id in sorted(wanted - set(sold)):
            self.logger.warning("mark_sold_not_active", listing_id=listing_id)
        for listing_id in sold:
            self.logger.info("listing_sold", listing_id=listing_id)
        return sold

    def _move(
        self, records: list[ListingRecord], target: ListingState, now: datetime
    ) -> list[ListingRecord]:
        # Destination is written before the caller rewrites the source, so a
        # crash in between leaves a duplicate for the sweep, never a loss.
        moved = [
            record.model_copy(update={"state": target, "last_updated": now}) for record in records
        ]
        merged = replace_by_id(self.store.read_collection(target), moved)
        self.store.write_collection(target, merged)
        return moved

    # ------------------------------------------------------------------
    # Purge and retention
    # ------------------------------------------------------------------
    def is_purge_eligible(self, record: ListingRecord, now: datetime) -> bool:
        # Missing or unparseable scraped_at counts as old.
        if record.scraped_at is None:
            return True
        return record.scraped_at < now - timedelta(days=self.config.purge_after_days)

    def purge_aged(self, now: datetime | None = None) -> PurgeResult:
        now = now or self.now()
        days = self.config.purge_after_days
        result = PurgeResult()
        archived_batch: list[ListingRecord] = []

        kept: dict[ListingState, list[ListingRecord]] = {}
        for state, reason in (
            (ListingState.ACTIVE, f"{days}_day_auto_purge"),
            (ListingState.PENDING, f"{days}_day_auto_purge_pending"),
        ):
            records = self.store.read_collection(state)
            current: list[ListingRecord] = []
            for record in records:
                if self.is_purge_eligible(record, now):
                    if record.scraped_at is None:
                        self.logger.warning("purge_missing_scraped_at", listing_id=record.id)
                    archived_batch.append(
                        record.model_copy(
                            update={
                                "state": ListingState.ARCHIVED,
                                "archived_at": now,
                                "archive_reason": reason,
                                "last_updated": now,
                            }
                        )
                    )
                    self.logger.info(
                        "listing_purged",
                        listing_id=record.id,
                        from_state=state.value,
                        reason=reason,
                        scraped_at=record.scraped_at.isoformat() if record.scraped_at else None,
                    )
                else:
                    current.append(record)
            kept[state] = current
            if state is ListingState.ACTIVE:
                result.total_active = len(records)
                result.purged_active = len(records) - len(current)
            else:
                result.total_pending = len(records)
                result.purged_pending = len(records) - len(current)

        if archived_batch:
            archived = self.store.read_collection(ListingState.ARCHIVED)
            merged = replace_by_id(archived, archived_batch)
            self.store.write_collection(ListingState.ARCHIVED, merged)
            for state, current in kept.items():
                self.store.write_collection(state, current)

        self.logger.info(
            "purge_completed",
            purged_active=result.purged_active,
            purged_pending=result.purged_pending,
            moved_to_archived=result.moved_to_archived,
        )
        return result

    def enforce_retention(self, now: datetime | None = None) -> RetentionResult:
        """Hard-delete archived records past the retention window or the archive cap."""

        now = now or self.now()
        cutoff = now - timedelta(days=self.config.archive_retention_days)
        archived = self.store.read_collection(ListingState.ARCHIVED)
        kept: list[ListingRecord] = []
        for record in archived:
            reference = record.archived_at or record.scraped_at
            if reference is not None and reference > cutoff:
                kept.append(record)
            else:
                self.logger.info(
                    "listing_retention_removed",
                    listing_id=record.id,
                    archived_at=reference.isoformat() if reference else None,
                )
        result = RetentionResult(expired=len(archived) - len(kept))

        limit = self.config.max_archived
        if len(kept) > limit:
            # Newest archive entries survive; order within the file is kept.
            newest = sorted(
                range(len(kept)),
                key=lambda index: kept[index].archived_at or kept[index].scraped_at,
                reverse=True,
            )[:limit]
            survivors = set(newest)
            trimmed = [record.id for index, record in enumerate(kept) if index not in survivors]
            kept = [record for index, record in enumerate(kept) if index in survivors]
            result.trimmed = len(trimmed)
            self.logger.info(
                "archive_trimmed", trimmed=result.trimmed, limit=limit, listing_ids=trimmed
            )

        if result.removed:
            self.store.write_collection(ListingState.ARCHIVED, kept)
        self.logger.info(
            "retention_completed",
            removed=result.removed,
            expired=result.expired,
            trimmed=result.trimmed,
            remaining=len(kept),
        )
        return result

    def write_purge_record(
        self,
        result: PurgeResult,
        *,
        retention: RetentionResult | None = None,
        errors: list[str] | None = None,
        now: datetime | None = None,
    ) -> dict:
        now = now or self.now()
        retention = retention or RetentionResult()
        history: list[dict] = []
        if self.purge_record_path.exists():
            previous = self.store.read_document(self.purge_record_path)
            if isinstance(previous.get("purge_history"), list):
                history = previous["purge_history"]
        entry = {
            "timestamp": now.isoformat(),
            "purge_days": self.config.purge_after_days,
            "purged_count": result.moved_to_archived,
            "retention_removed": retention.removed,
            "archive_trimmed": retention.trimmed,
            "results": {
                "total_active": result.total_active,
                "total_pending": result.total_pending,
                "purged_active": result.purged_active,
                "purged_pending": result.purged_pending,
            },
            "errors": errors or [],
        }
        record = dict(entry)
        record["next_purge"] = (now + timedelta(days=self.config.purge_interval_days)).isoformat()
        record["purge_history"] = [entry, *history][:PURGE_HISTORY_LIMIT]
        self.store.write_document(self.purge_record_path, record)
        return record

    def run_maintenance(
        self, now: datetime | None = None
    ) -> tuple[PurgeResult, RetentionResult]:
        """One full maintenance pass, recorded in the purge record."""

        now = now or self.now()
        self.backup()
        self.dedup_sweep()
        result = self.purge_aged(now)
        retention = self.enforce_retention(now)
        self.write_purge_record(result, retention=retention, now=now)
        return result, retention

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------
    def dedup_sweep(self, similar: bool = False) -> SweepResult:
        """Remove exact-id duplicates within and across collections.

        With ``similar`` the pending and active collections are also swept
        with the stricter similarity thresholds.
        """

        result = SweepResult()
        collections: dict[ListingState, list[ListingRecord]] = {}
        changed: set[ListingState] = set()
        for state in ListingState:
            unique, removed = dedupe_by_id(self.store.read_collection(state))
            collections[state] = unique
            result.removed_within[state.value] = len(removed)
            if removed:
                changed.add(state)
                self.logger.warning(
                    "duplicate_ids_removed", state=state.value, listing_ids=removed
                )

        owner: dict[str, ListingState] = {}
        for state in SWEEP_PRECEDENCE:
            kept: list[ListingRecord] = []
            for record in collections[state]:
                if record.id in owner:
                    result.removed_across += 1
                    changed.add(state)
                    self.logger.warning(
                        "cross_state_duplicate_removed",
                        listing_id=record.id,
                        state=state.value,
                        kept_in=owner[record.id].value,
                    )
                    continue
                owner[record.id] = state
                kept.append(record)
            collections[state] = kept

        if similar:
            detector = DuplicateDetector(Thresholds.sweep(self.dedup_config))
            for state in (ListingState.PENDING, ListingState.ACTIVE):
                unique, duplicates = dedupe_by_similarity(collections[state], detector)
                if duplicates:
                    collections[state] = unique
                    result.removed_similar += len(duplicates)
                    changed.add(state)
                    self.logger.info(
                        "similar_duplicates_removed",
                        state=state.value,
                        listing_ids=[record.id for record in duplicates],
                    )

        for state in ListingState:
            if state in changed:
                self.store.write_collection(state, collections[state])
        self.logger.info("dedup_sweep_completed", removed=result.total)
        return result

    def repair(self) -> dict[str, str]:
        """Validate each collection; corrupt ones are restored or reset."""

        report: dict[str, str] = {}
        for state in ListingState:
            reason = self.store.validate_collection(state)
            if reason is None:
                report[state.value] = "ok"
                continue
            self.logger.warning("repair_collection", state=state.value, reason=reason)
            backup = self.store.latest_valid_backup(
                self.store.collection_path(state).relative_to(self.store.data_dir)
            )
            self.store.repair_collection(state)
            report[state.value] = "restored" if backup is not None else "reset"
        self.logger.info("repair_completed", **report)
        return report

    def backup(self) -> Path:
        return self.store.create_backup()

    def restore_from_backup(self, name: str | None = None) -> Path:
        return self.store.restore_backup(name)


__all__ = [
    "LifecycleManager",
    "PurgeResult",
    "RetentionResult",
    "SWEEP_PRECEDENCE",
    "SweepResult",
    "replace_by_id",
]
