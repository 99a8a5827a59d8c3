"""Pydantic models describing listings, price history and adapter payloads."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalise_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Best-effort conversion of persisted timestamps; ``None`` when unusable."""

    if value is None:
        return None
    if isinstance(value, datetime):
        return normalise_datetime(value)
    if isinstance(value, (int, float)):
        numeric = float(value)
        if numeric > 1_000_000_000_000:  # milliseconds
            numeric /= 1000.0
        return datetime.fromtimestamp(numeric, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return normalise_datetime(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


class ListingState(str, Enum):
    """Lifecycle states, one collection file per state."""

    PENDING = "pending"
    ACTIVE = "active"
    SOLD = "sold"
    ARCHIVED = "archived"


class ChangeType(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"


class PriceTrend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class ListingRecord(BaseModel):
    """Unit of the corpus; unknown keys from legacy files are preserved."""

    model_config = ConfigDict(extra="allow")

    id: str
    source: str
    external_id: str | None = None
    title: str
    description: str | None = None
    location: str = ""
    price_usd: float = Field(ge=0)
    price_text: str = ""
    images: list[str] = Field(default_factory=list)
    url: str | None = None
    property_type: str | None = None
    state: ListingState = ListingState.PENDING
    enrichment: dict[str, Any] = Field(default_factory=dict)
    scraped_at: datetime | None = None
    last_updated: datetime | None = None
    archived_at: datetime | None = None
    archive_reason: str | None = None
    sold_at: datetime | None = None

    @field_validator("scraped_at", "last_updated", "archived_at", "sold_at", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> datetime | None:
        # Unparseable timestamps become None; purge treats that as "always old".
        return parse_timestamp(value)

    @field_validator("images", mode="before")
    @classmethod
    def _coerce_images(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value else []
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value if item]
        raise ValueError("images must be a URL or a list of URLs")

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class RawListing(BaseModel):
    """Source adapter output, not yet validated or admitted."""

    model_config = ConfigDict(extra="allow")

    source: str
    external_id: str | None = None
    url: str | None = None
    title: str = ""
    description: str | None = None
    price_text: str = ""
    price_amount: float | None = None
    price_currency: str | None = None
    location_text: str = ""
    property_type: str | None = None
    images: list[str] = Field(default_factory=list)
    scraped_at: datetime = Field(default_factory=utcnow)

    @field_validator("scraped_at", mode="before")
    @classmethod
    def _coerce_scraped_at(cls, value: Any) -> datetime:
        return parse_timestamp(value) or utcnow()

    @field_validator("external_id", mode="before")
    @classmethod
    def _coerce_external_id(cls, value: Any) -> str | None:
        if value in (None, ""):
            return None
        return str(value)


class PriceChange(BaseModel):
    """One recorded price movement; amount and percent are signed."""

    date: datetime
    old_price: float
    new_price: float
    change_amount: float
    change_percent: float
    change_type: ChangeType


class PriceHistoryEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    listing_id: str
    source: str
    external_id: str | None = None
    title: str
    changes: list[PriceChange] = Field(default_factory=list)
    first_seen_price: float
    current_price: float
    price_trend: PriceTrend = PriceTrend.STABLE
    last_updated: datetime = Field(default_factory=utcnow)


class PriceChangeNotification(BaseModel):
    """Ephemeral change event; amount and percent are absolute values."""

    listing_id: str
    title: str
    url: str | None = None
    location: str = ""
    property_type: str | None = None
    old_price: float
    new_price: float
    change_amount: float
    change_percent: float
    change_type: ChangeType
    images: list[str] = Field(default_factory=list)
    detected_at: datetime = Field(default_factory=utcnow)


__all__ = [
    "ChangeType",
    "ListingRecord",
    "ListingState",
    "PriceChange",
    "PriceChangeNotification",
    "PriceHistoryEntry",
    "PriceTrend",
    "RawListing",
    "normalise_datetime",
    "parse_timestamp",
    "utcnow",
]
