"""Price history per listing, change detection and notifications."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable

import structlog
from pydantic import ValidationError

from ..config import TrackerConfig
from ..infra.storage import CollectionStore
from ..models import (
    ChangeType,
    ListingRecord,
    PriceChange,
    PriceChangeNotification,
    PriceHistoryEntry,
    PriceTrend,
    utcnow,
)


@dataclass(slots=True)
class TrackerStats:
    total_tracked: int
    with_changes: int
    average_change_percent: float
    biggest_increase: PriceHistoryEntry | None
    biggest_decrease: PriceHistoryEntry | None


def classify_trend(entry: PriceHistoryEntry, window: int = 5, threshold: float = 0.05) -> PriceTrend:
    """Trend of the last ``window`` signed changes relative to the first-seen price."""

    if not entry.changes or entry.first_seen_price <= 0:
        return PriceTrend.STABLE
    total = sum(change.change_amount for change in entry.changes[-window:])
    ratio = abs(total / entry.first_seen_price)
    if total > 0 and ratio > threshold:
        return PriceTrend.INCREASING
    if total < 0 and ratio > threshold:
        return PriceTrend.DECREASING
    return PriceTrend.STABLE


class PriceChangeTracker:
    """Compare observed prices against history and record movements.

    Percentages are relative to the previous price; the trend uses the
    first-seen price as its baseline. History entries store signed amounts,
    notifications carry absolute values plus a direction.
    """

    def __init__(
        self,
        store: CollectionStore,
        config: TrackerConfig | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.config = config or TrackerConfig()
        self.logger = logger or structlog.get_logger("listing_pipeline").bind(component="price_tracker")
        self.now = now

    # ------------------------------------------------------------------
    def track_batch(self, observations: Iterable[ListingRecord]) -> list[PriceChangeNotification]:
        history = self.load_history()
        notifications: list[PriceChangeNotification] = []
        observed = 0
        for record in observations:
            observed += 1
            try:
                notification = self._observe(record, history)
            except Exception as exc:  # noqa: BLE001 - one bad record must not stop the batch
                self.logger.error("price_track_failed", listing_id=record.id, error=str(exc))
                continue
            if notification is not None:
                notifications.append(notification)
                self.logger.info(
                    "price_change_detected",
                    listing_id=record.id,
                    old_price=notification.old_price,
                    new_price=notification.new_price,
                    change_percent=round(notification.change_percent, 2),
                    change_type=notification.change_type.value,
                )

        self.save_history(history)
        if notifications:
            self.append_notifications(notifications)
        self.logger.info(
            "price_tracking_completed", observed=observed, changes_detected=len(notifications)
        )
        return notifications

    def _observe(
        self, record: ListingRecord, history: dict[str, PriceHistoryEntry]
    ) -> PriceChangeNotification | None:
        now = self.now()
        price = record.price_usd
        entry = history.get(record.id)
        if entry is None:
            history[record.id] = PriceHistoryEntry(
                listing_id=record.id,
                source=record.source,
                external_id=record.external_id,
                title=record.title,
                first_seen_price=price,
                current_price=price,
                price_trend=PriceTrend.STABLE,
                last_updated=now,
            )
            return None

        previous = entry.current_price
        if abs(price - previous) < self.config.change_tolerance:
            entry.last_updated = now
            return None

        amount = price - previous
        percent = (amount / previous) * 100 if previous else 0.0
        change_type = ChangeType.INCREASE if amount > 0 else ChangeType.DECREASE
        entry.changes.append(
            PriceChange(
                date=now,
                old_price=previous,
                new_price=price,
                change_amount=amount,
                change_percent=percent,
                change_type=change_type,
            )
        )
        entry.current_price = price
        entry.title = record.title
        entry.last_updated = now
        entry.price_trend = classify_trend(
            entry, self.config.trend_window, self.config.trend_threshold
        )
        return PriceChangeNotification(
            listing_id=record.id,
            title=record.title,
            url=record.url,
            location=record.location,
            property_type=record.property_type,
            old_price=previous,
            new_price=price,
            change_amount=abs(amount),
            change_percent=abs(percent),
            change_type=change_type,
            images=record.images[: self.config.notification_images],
            detected_at=now,
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def load_history(self) -> dict[str, PriceHistoryEntry]:
        history: dict[str, PriceHistoryEntry] = {}
        for item in self.store.read_json_array(self.store.price_history_path):
            try:
                entry = PriceHistoryEntry.model_validate(item)
            except ValidationError as exc:
                self.logger.warning(
                    "price_history_entry_invalid",
                    listing_id=item.get("listing_id"),
                    error=str(exc.errors()[0]["msg"]) if exc.errors() else str(exc),
                )
                continue
            history[entry.listing_id] = entry
        return history

    def save_history(self, history: dict[str, PriceHistoryEntry]) -> None:
        self.store.write_json_array(
            self.store.price_history_path,
            [entry.model_dump(mode="json") for entry in history.values()],
        )

    def load_notifications(self) -> list[PriceChangeNotification]:
        notifications: list[PriceChangeNotification] = []
        for item in self.store.read_json_array(self.store.notifications_path):
            try:
                notifications.append(PriceChangeNotification.model_validate(item))
            except ValidationError:
                self.logger.warning("notification_invalid", listing_id=item.get("listing_id"))
        return notifications

    def append_notifications(self, notifications: list[PriceChangeNotification]) -> None:
        existing = self.store.read_json_array(self.store.notifications_path)
        existing.extend(item.model_dump(mode="json") for item in notifications)
        cap = self.config.max_notifications
        if len(existing) > cap:
            existing = existing[-cap:]
        self.store.write_json_array(self.store.notifications_path, existing)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def recent_notifications(self, limit: int = 50) -> list[PriceChangeNotification]:
        """Most recent first."""

        if limit <= 0:
            return []
        return list(reversed(self.load_notifications()[-limit:]))

    def history_for(self, listing_id: str) -> PriceHistoryEntry | None:
        return self.load_history().get(listing_id)

    def stats(self) -> TrackerStats:
        entries = list(self.load_history().values())
        changed = [entry for entry in entries if entry.changes]
        total_percent = 0.0
        biggest_increase: PriceHistoryEntry | None = None
        biggest_decrease: PriceHistoryEntry | None = None
        max_increase = 0.0
        max_decrease = 0.0
        for entry in changed:
            delta = entry.current_price - entry.first_seen_price
            if entry.first_seen_price:
                total_percent += delta / entry.first_seen_price * 100
            if delta > max_increase:
                max_increase, biggest_increase = delta, entry
            if delta < max_decrease:
                max_decrease, biggest_decrease = delta, entry
        return TrackerStats(
            total_tracked=len(entries),
            with_changes=len(changed),
            average_change_percent=total_percent / len(changed) if changed else 0.0,
            biggest_increase=biggest_increase,
            biggest_decrease=biggest_decrease,
        )


__all__ = ["PriceChangeTracker", "TrackerStats", "classify_trend"]
