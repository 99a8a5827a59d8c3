"""Engine components orchestrating fetch → normalise → dedup → track → lifecycle."""

from .dedup import DuplicateDetector, Thresholds, dedupe_by_id, levenshtein, similarity
from .enrichment import EnrichmentChain, ProvinceEnricher
from .fetcher import FetchRequest, FetchResponse, Fetcher
from .lifecycle import LifecycleManager, PurgeResult, RetentionResult, SweepResult
from .normalize import CandidateNormalizer, generate_id, parse_price
from .price_tracker import PriceChangeTracker, TrackerStats
from .rate_limit import Clock, RateLimiter, SystemClock

__all__ = [
    "CandidateNormalizer",
    "Clock",
    "DuplicateDetector",
    "EnrichmentChain",
    "FetchRequest",
    "FetchResponse",
    "Fetcher",
    "LifecycleManager",
    "PriceChangeTracker",
    "ProvinceEnricher",
    "PurgeResult",
    "RateLimiter",
    "RetentionResult",
    "SweepResult",
    "SystemClock",
    "Thresholds",
    "TrackerStats",
    "dedupe_by_id",
    "generate_id",
    "levenshtein",
    "parse_price",
    "similarity",
]
