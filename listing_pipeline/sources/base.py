"""Source adapter interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterable

import structlog
from pydantic import ValidationError

from ..config import SourceConfig
from ..models import RawListing

RAW_FIELDS = (
    "external_id",
    "url",
    "title",
    "description",
    "price_text",
    "price_amount",
    "price_currency",
    "location_text",
    "property_type",
    "images",
    "scraped_at",
)


def lookup(item: Any, dotted: str) -> Any:
    """Resolve ``a.b.0.c`` style keys inside nested dicts and lists."""

    current = item
    for part in dotted.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


class SourceAdapter(ABC):
    """Uniform contract: one external source in, raw listings out."""

    def __init__(
        self, source: SourceConfig, logger: structlog.stdlib.BoundLogger | None = None
    ) -> None:
        self.source = source
        self.logger = logger or structlog.get_logger("listing_pipeline").bind(
            component="source", source=source.name
        )
        # Items that could not even be shaped into a RawListing.
        self.rejected = 0

    @property
    def name(self) -> str:
        return self.source.name

    @abstractmethod
    def scrape(self) -> list[RawListing]:
        """Return raw candidates in source order."""

    def close(self) -> None:
        """Release underlying resources."""

    def build_raw(self, item: dict[str, Any]) -> RawListing | None:
        payload: dict[str, Any] = {"source": self.source.name}
        for name in RAW_FIELDS:
            key = self.source.field_map.get(name, name)
            value = lookup(item, key)
            if value is not None:
                payload[name] = value
        for key in ("price_text", "title", "location_text"):
            if key in payload and not isinstance(payload[key], str):
                payload[key] = str(payload[key])
        try:
            return RawListing.model_validate(payload)
        except ValidationError as exc:
            self.rejected += 1
            self.logger.warning(
                "raw_listing_invalid",
                external_id=payload.get("external_id"),
                error=str(exc.errors()[0]["msg"]) if exc.errors() else str(exc),
            )
            return None

    def build_many(self, items: Iterable[Any]) -> list[RawListing]:
        listings: list[RawListing] = []
        for item in items:
            if not isinstance(item, dict):
                self.rejected += 1
                self.logger.warning("raw_listing_invalid", error="item is not an object")
                continue
            raw = self.build_raw(item)
            if raw is not None:
                listings.append(raw)
        return listings


def extract_items(payload: Any, items_key: str | None) -> list[Any]:
    if items_key:
        found = lookup(payload, items_key)
        return found if isinstance(found, list) else []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("listings", "properties", "items", "results", "data"):
            if isinstance(payload.get(key), list):
                return payload[key]
    return []


__all__ = ["RAW_FIELDS", "SourceAdapter", "extract_items", "lookup"]
