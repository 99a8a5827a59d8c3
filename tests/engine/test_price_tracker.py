from __future__ import annotations

import json

import pytest

from listing_pipeline.config import TrackerConfig
from listing_pipeline.engine.price_tracker import PriceChangeTracker, classify_trend
from listing_pipeline.models import ChangeType, PriceHistoryEntry, PriceTrend


@pytest.fixture
def tracker(store, frozen_now) -> PriceChangeTracker:
    return PriceChangeTracker(store, TrackerConfig(), now=frozen_now)


def test_first_observation_creates_history_without_notification(tracker, store, make_record) -> None:
    record = make_record(price_usd=250_000.0)

    assert tracker.track_batch([record]) == []

    entry = tracker.history_for(record.id)
    assert entry is not None
    assert entry.first_seen_price == entry.current_price == 250_000.0
    assert entry.price_trend is PriceTrend.STABLE
    assert entry.changes == []
    assert not store.notifications_path.exists()


def test_price_drop_records_signed_change_and_absolute_notification(
    tracker, make_record, frozen_now
) -> None:
    record = make_record(
        price_usd=250_000.0,
        images=[f"https://img.example/{n}.jpg" for n in range(5)],
    )
    tracker.track_batch([record])
    frozen_now.advance(days=1)

    notifications = tracker.track_batch([record.model_copy(update={"price_usd": 230_000.0})])

    assert len(notifications) == 1
    notice = notifications[0]
    assert notice.old_price == 250_000.0
    assert notice.new_price == 230_000.0
    assert notice.change_amount == 20_000.0
    assert notice.change_percent == pytest.approx(8.0)
    assert notice.change_type is ChangeType.DECREASE
    assert len(notice.images) == 3
    assert notice.detected_at == frozen_now()

    entry = tracker.history_for(record.id)
    assert entry.current_price == 230_000.0
    assert entry.changes[-1].change_amount == -20_000.0
    assert entry.changes[-1].change_percent == pytest.approx(-8.0)
    assert entry.price_trend is PriceTrend.DECREASING


def test_sub_cent_difference_only_touches_last_updated(tracker, make_record, frozen_now) -> None:
    record = make_record(price_usd=100_000.0)
    tracker.track_batch([record])
    frozen_now.advance(hours=2)

    notifications = tracker.track_batch([record.model_copy(update={"price_usd": 100_000.005})])

    entry = tracker.history_for(record.id)
    assert notifications == []
    assert entry.changes == []
    assert entry.current_price == 100_000.0
    assert entry.last_updated == frozen_now()


def test_notification_log_is_capped(store, make_record, frozen_now) -> None:
    tracker = PriceChangeTracker(store, TrackerConfig(max_notifications=2), now=frozen_now)
    record = make_record(price_usd=100.0)
    tracker.track_batch([record])
    for price in (110.0, 120.0, 130.0):
        tracker.track_batch([record.model_copy(update={"price_usd": price})])

    stored = json.loads(store.notifications_path.read_text(encoding="utf-8"))
    assert [item["new_price"] for item in stored] == [120.0, 130.0]
    assert [item.new_price for item in tracker.recent_notifications()] == [130.0, 120.0]
    assert tracker.recent_notifications(limit=0) == []


def test_failing_observation_does_not_stop_batch(tracker, make_record, monkeypatch) -> None:
    good = make_record()
    bad = make_record()
    original = tracker._observe

    def flaky(record, history):
        if record.id == bad.id:
            raise RuntimeError("boom")
        return original(record, history)

    monkeypatch.setattr(tracker, "_observe", flaky)
    tracker.track_batch([bad, good])

    assert tracker.history_for(good.id) is not None
    assert tracker.history_for(bad.id) is None


def test_corrupt_history_file_is_reset(tracker, store, make_record) -> None:
    store.price_history_path.parent.mkdir(parents=True, exist_ok=True)
    store.price_history_path.write_text("{not json", encoding="utf-8")

    tracker.track_batch([make_record()])

    assert len(tracker.load_history()) == 1


def test_trend_uses_last_window_relative_to_first_price(tracker, make_record) -> None:
    record = make_record(price_usd=100.0)
    tracker.track_batch([record])
    for price in (101.0, 102.0, 103.0, 104.0, 105.0, 106.0):
        tracker.track_batch([record.model_copy(update={"price_usd": price})])

    entry = tracker.history_for(record.id)
    assert len(entry.changes) == 6
    # last five changes sum to +5, exactly the band edge
    assert entry.price_trend is PriceTrend.STABLE
    assert classify_trend(entry, window=6) is PriceTrend.INCREASING


def test_classify_trend_ignores_zero_baseline() -> None:
    entry = PriceHistoryEntry(
        listing_id="x", source="s", title="t", first_seen_price=0.0, current_price=10.0
    )
    assert classify_trend(entry) is PriceTrend.STABLE


def test_stats_summarise_history(tracker, make_record) -> None:
    falling = make_record(price_usd=250_000.0)
    rising = make_record(price_usd=100_000.0)
    flat = make_record(price_usd=50_000.0)
    tracker.track_batch([falling, rising, flat])
    tracker.track_batch(
        [
            falling.model_copy(update={"price_usd": 230_000.0}),
            rising.model_copy(update={"price_usd": 110_000.0}),
            flat,
        ]
    )

    stats = tracker.stats()

    assert stats.total_tracked == 3
    assert stats.with_changes == 2
    assert stats.average_change_percent == pytest.approx(1.0)
    assert stats.biggest_increase.listing_id == rising.id
    assert stats.biggest_decrease.listing_id == falling.id
