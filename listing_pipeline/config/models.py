"""Pydantic models used across the listing pipeline configuration flow."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class ScheduleType(str, Enum):
    """Scheduler modes for periodic runs."""

    CRON = "cron"
    INTERVAL = "interval"
    ONCE = "once"


class ScheduleConfig(BaseModel):
    """Configuration describing when a job should run."""

    type: ScheduleType = Field(default=ScheduleType.ONCE)
    value: Any = Field(
        default=None,
        description="Cron expression, interval seconds or ISO datetime, depending on type.",
    )

    @model_validator(mode="after")
    def _validate_value(self) -> "ScheduleConfig":
        if self.type is ScheduleType.CRON and not isinstance(self.value, str):
            raise ValueError("Cron schedule requires string expression")
        if self.type is ScheduleType.INTERVAL and not isinstance(self.value, (int, float, dict)):
            raise ValueError("Interval schedule requires seconds (int/float) or kwargs dict")
        if (
            self.type is ScheduleType.ONCE
            and self.value is not None
            and not isinstance(self.value, str)
        ):
            raise ValueError("Once schedule expects ISO datetime string or null")
        return self


class ServiceRateLimit(BaseModel):
    """Request budget for one service tag."""

    requests_per_window: int = 1
    window_seconds: float = 1.0

    @model_validator(mode="after")
    def _validate_budget(self) -> "ServiceRateLimit":
        if self.requests_per_window < 1:
            raise ValueError("requests_per_window must be >= 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        return self


class RateLimitConfig(BaseModel):
    """Default budget plus per-service overrides."""

    default: ServiceRateLimit = Field(default_factory=ServiceRateLimit)
    services: dict[str, ServiceRateLimit] = Field(default_factory=dict)

    @field_validator("services", mode="before")
    @classmethod
    def _coerce_services(cls, value: Any) -> Any:
        # Shorthand: ``{encuentra24: 5}`` means five requests per default window.
        if isinstance(value, dict):
            return {
                name: {"requests_per_window": entry} if isinstance(entry, int) else entry
                for name, entry in value.items()
            }
        return value

    def for_service(self, service: str) -> ServiceRateLimit:
        return self.services.get(service, self.default)


class RetryConfig(BaseModel):
    """Retry ceiling and backoff shape for transient fetch failures."""

    max_attempts: int = 3
    backoff: Literal["linear", "exponential"] = "linear"
    base_delay: float = 1.0
    max_delay: float = 30.0
    timeout: float = 30.0

    @model_validator(mode="after")
    def _validate_retry(self) -> "RetryConfig":
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Backoff delays must be non-negative")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        return self


class DedupConfig(BaseModel):
    """Similarity thresholds used to classify duplicates."""

    title_threshold: float = 0.8
    location_threshold: float = 0.7
    # Stricter pair used by the maintenance sweep over an existing collection.
    sweep_title_threshold: float = 0.85
    sweep_location_threshold: float = 0.8

    @field_validator(
        "title_threshold",
        "location_threshold",
        "sweep_title_threshold",
        "sweep_location_threshold",
    )
    @classmethod
    def _check_ratio(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("Similarity thresholds must lie within [0, 1]")
        return value


class LifecycleConfig(BaseModel):
    """Age-based purge and archive retention policy."""

    purge_after_days: int = 90
    archive_retention_days: int = 365
    max_archived: int = 1000
    max_backups: int = 10
    purge_interval_days: int = 7

    @model_validator(mode="after")
    def _validate_policy(self) -> "LifecycleConfig":
        if self.purge_after_days < 1:
            raise ValueError("purge_after_days must be >= 1")
        if self.archive_retention_days < 1:
            raise ValueError("archive_retention_days must be >= 1")
        if self.max_archived < 1:
            raise ValueError("max_archived must be >= 1")
        if self.max_backups < 1:
            raise ValueError("max_backups must be >= 1")
        return self


class TrackerConfig(BaseModel):
    """Price tracker tolerances and notification log cap."""

    max_notifications: int = 1000
    change_tolerance: float = 0.01
    trend_window: int = 5
    trend_threshold: float = 0.05
    notification_images: int = 3

    @model_validator(mode="after")
    def _validate_tracker(self) -> "TrackerConfig":
        if self.max_notifications < 1:
            raise ValueError("max_notifications must be >= 1")
        if self.trend_window < 1:
            raise ValueError("trend_window must be >= 1")
        return self


class SourceKind(str, Enum):
    """Built-in source adapter implementations."""

    JSON_FILE = "json_file"
    JSON_FEED = "json_feed"
    HTML_LIST = "html_list"


class SourceConfig(BaseModel):
    """Definition of one ingestion source."""

    name: str
    kind: SourceKind = SourceKind.JSON_FILE
    enabled: bool = True
    service: str | None = Field(
        default=None, description="Rate-limit tag; defaults to the source name."
    )
    target_url: str | None = None
    path: Path | None = None
    items_key: str | None = Field(
        default=None, description="Dotted key locating the item list inside a JSON feed."
    )
    field_map: dict[str, str] = Field(default_factory=dict)
    entry_pattern: str | None = None
    detail_pattern: dict[str, str | list[str]] = Field(default_factory=dict)
    page_param: str | None = None
    max_pages: int = 1

    @field_validator("path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path | None:
        if value in (None, ""):
            return None
        return Path(value)

    @model_validator(mode="after")
    def _validate_kind(self) -> "SourceConfig":
        if not self.name.strip():
            raise ValueError("Source name cannot be empty")
        if self.max_pages < 1:
            raise ValueError("max_pages must be >= 1")
        if self.kind is SourceKind.JSON_FILE and self.path is None:
            raise ValueError("json_file sources require a path")
        if self.kind in (SourceKind.JSON_FEED, SourceKind.HTML_LIST) and not self.target_url:
            raise ValueError(f"{self.kind.value} sources require target_url")
        if self.kind is SourceKind.HTML_LIST and not self.entry_pattern:
            raise ValueError("html_list sources require entry_pattern")
        return self

    @property
    def service_tag(self) -> str:
        return self.service or self.name

    def resolved_path(self, base_dir: Path) -> Path | None:
        if self.path is None:
            return None
        if not self.path.is_absolute():
            return (base_dir / self.path).resolve()
        return self.path


class PipelineConfig(BaseModel):
    """Global controls for ingestion, lifecycle and persistence."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_retention_days: int = 14
    user_agent: str = "listing-pipeline/0.1 (+https://example.invalid)"
    crc_to_usd_rate: float = Field(default=500.0, gt=0)
    rate_limits: RateLimitConfig = Field(default_factory=RateLimitConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    run_schedule: ScheduleConfig = Field(
        default_factory=lambda: ScheduleConfig(type=ScheduleType.CRON, value="0 6 * * *")
    )
    maintenance_schedule: ScheduleConfig = Field(
        default_factory=lambda: ScheduleConfig(type=ScheduleType.CRON, value="0 3 * * 0")
    )
    sources: list[SourceConfig] = Field(default_factory=list)

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            upper = value.upper()
            return "WARNING" if upper == "WARN" else upper
        return value

    @model_validator(mode="after")
    def _unique_sources(self) -> "PipelineConfig":
        names = [source.name for source in self.sources]
        if len(names) != len(set(names)):
            raise ValueError("Source names must be unique")
        return self

    def source(self, name: str) -> SourceConfig:
        for source in self.sources:
            if source.name == name:
                return source
        raise KeyError(name)


__all__ = [
    "DedupConfig",
    "LifecycleConfig",
    "PipelineConfig",
    "RateLimitConfig",
    "RetryConfig",
    "ScheduleConfig",
    "ScheduleType",
    "ServiceRateLimit",
    "SourceConfig",
    "SourceKind",
    "TrackerConfig",
]
