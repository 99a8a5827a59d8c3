"""Duplicate detection by edit-distance similarity and exact id."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from ..config import DedupConfig
from ..models import ListingRecord


def levenshtein(a: str, b: str) -> int:
    """Classic two-row edit distance (insert, delete, substitute all cost 1)."""

    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ch_a in enumerate(a, start=1):
        current = [i]
        for j, ch_b in enumerate(b, start=1):
            cost = 0 if ch_a == ch_b else 1
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + cost,
                )
            )
        previous = current
    return previous[-1]


def similarity(a: str | None, b: str | None) -> float:
    """``1 - levenshtein / max(len)`` compared case-insensitively; empty gives 0."""

    if not a or not b:
        return 0.0
    left, right = a.lower(), b.lower()
    longest = max(len(left), len(right))
    return 1.0 - levenshtein(left, right) / longest


@dataclass(frozen=True, slots=True)
class Thresholds:
    title: float
    location: float

    @classmethod
    def ingest(cls, config: DedupConfig) -> "Thresholds":
        return cls(config.title_threshold, config.location_threshold)

    @classmethod
    def sweep(cls, config: DedupConfig) -> "Thresholds":
        return cls(config.sweep_title_threshold, config.sweep_location_threshold)


class DuplicateDetector:
    """Compare a candidate against the corpus; the first match wins."""

    def __init__(self, thresholds: Thresholds) -> None:
        self.thresholds = thresholds

    def matches(self, title: str, location: str, existing: ListingRecord) -> bool:
        return (
            similarity(title, existing.title) > self.thresholds.title
            and similarity(location, existing.location) > self.thresholds.location
        )

    def find_duplicate(
        self, title: str, location: str, corpus: Iterable[ListingRecord]
    ) -> ListingRecord | None:
        for existing in corpus:
            if self.matches(title, location, existing):
                return existing
        return None

    def is_duplicate(self, candidate: ListingRecord, corpus: Iterable[ListingRecord]) -> bool:
        return self.find_duplicate(candidate.title, candidate.location, corpus) is not None


def dedupe_by_id(records: Sequence[ListingRecord]) -> tuple[list[ListingRecord], list[str]]:
    """Drop repeated ids, keeping the first occurrence and the original order."""

    seen: set[str] = set()
    unique: list[ListingRecord] = []
    removed: list[str] = []
    for record in records:
        if record.id in seen:
            removed.append(record.id)
            continue
        seen.add(record.id)
        unique.append(record)
    return unique, removed


def dedupe_by_similarity(
    records: Sequence[ListingRecord], detector: DuplicateDetector
) -> tuple[list[ListingRecord], list[ListingRecord]]:
    unique: list[ListingRecord] = []
    duplicates: list[ListingRecord] = []
    for record in records:
        if detector.is_duplicate(record, unique):
            duplicates.append(record)
        else:
            unique.append(record)
    return unique, duplicates


__all__ = [
    "DuplicateDetector",
    "Thresholds",
    "dedupe_by_id",
    "dedupe_by_similarity",
    "levenshtein",
    "similarity",
]
