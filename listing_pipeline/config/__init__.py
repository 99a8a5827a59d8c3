"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    DedupConfig,
    LifecycleConfig,
    PipelineConfig,
    RateLimitConfig,
    RetryConfig,
    ScheduleConfig,
    ScheduleType,
    ServiceRateLimit,
    SourceConfig,
    SourceKind,
    TrackerConfig,
)

__all__ = [
    "ConfigLocator",
    "ConfigRepository",
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
