from __future__ import annotations

import pytest

from listing_pipeline.config import (
    DedupConfig,
    LifecycleConfig,
    PipelineConfig,
    RateLimitConfig,
    RetryConfig,
    ScheduleConfig,
    ScheduleType,
    SourceConfig,
)


def test_schedule_config_interval_requires_numeric() -> None:
    with pytest.raises(ValueError):
        ScheduleConfig(type=ScheduleType.INTERVAL)
    with pytest.raises(ValueError):
        ScheduleConfig(type=ScheduleType.INTERVAL, value="every minute")
    cfg = ScheduleConfig(type=ScheduleType.INTERVAL, value={"minutes": 2})
    assert cfg.value == {"minutes": 2}


def test_schedule_config_cron_requires_string() -> None:
    with pytest.raises(ValueError):
        ScheduleConfig(type=ScheduleType.CRON, value=5)


def test_rate_limit_shorthand() -> None:
    config = RateLimitConfig.model_validate(
        {"services": {"encuentra24": 5, "portal": {"requests_per_window": 2, "window_seconds": 10}}}
    )
    assert config.for_service("encuentra24").requests_per_window == 5
    assert config.for_service("portal").window_seconds == 10
    with pytest.raises(ValueError):
        RateLimitConfig.model_validate({"default": {"requests_per_window": 0}})


def test_retry_and_lifecycle_bounds() -> None:
    with pytest.raises(ValueError):
        RetryConfig(max_attempts=0)
    with pytest.raises(ValueError):
        RetryConfig(backoff="random")
    with pytest.raises(ValueError):
        LifecycleConfig(purge_after_days=0)
    with pytest.raises(ValueError):
        LifecycleConfig(max_archived=0)
    with pytest.raises(ValueError):
        DedupConfig(title_threshold=1.5)


def test_source_kind_requirements() -> None:
    with pytest.raises(ValueError):
        SourceConfig(name="file")
    with pytest.raises(ValueError):
        SourceConfig(name="feed", kind="json_feed")
    with pytest.raises(ValueError):
        SourceConfig(name="html", kind="html_list", target_url="https://x.example")
    source = SourceConfig(name="feed", kind="json_feed", target_url="https://x.example")
    assert source.service_tag == "feed"
    assert SourceConfig(name="f", path="a.json", service="shared").service_tag == "shared"


def test_pipeline_config_defaults_and_validation() -> None:
    config = PipelineConfig(log_level="warn")
    assert config.log_level == "WARNING"
    assert config.dedup.title_threshold == 0.8
    assert config.dedup.location_threshold == 0.7
    assert config.lifecycle.purge_after_days == 90
    assert config.lifecycle.archive_retention_days == 365
    assert config.tracker.max_notifications == 1000
    assert config.run_schedule.type is ScheduleType.CRON

    with pytest.raises(ValueError):
        PipelineConfig(sources=[{"name": "a", "path": "a.json"}, {"name": "a", "path": "b.json"}])
    with pytest.raises(KeyError):
        config.source("missing")
