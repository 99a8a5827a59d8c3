"""Turn adapter output into validated listing records."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from html import unescape

from pydantic import ValidationError
from selectolax.parser import HTMLParser

from ..errors import InvalidCandidateError
from ..models import ListingRecord, ListingState, RawListing

_NUMBER_RE = re.compile(r"\d[\d,.]*")
_WHITESPACE_RE = re.compile(r"\s+")
_CRC_MARKERS = ("₡", "¢", "COL", "CRC")
_USD_MARKERS = ("$", "USD")
# Amounts above this are assumed to be colones even without a marker.
CRC_AMOUNT_HINT = 100_000


@dataclass(frozen=True, slots=True)
class ParsedPrice:
    amount: float
    currency: str


def _normalise_number(text: str) -> str:
    has_dot, has_comma = "." in text, "," in text
    if has_dot and has_comma:
        if text.rfind(".") > text.rfind(","):
            return text.replace(",", "")
        return text.replace(".", "").replace(",", ".")
    if has_comma:
        parts = text.split(",")
        if len(parts) == 2 and len(parts[1]) <= 2:
            return text.replace(",", ".")
        return text.replace(",", "")
    if has_dot:
        parts = text.split(".")
        # "125.000.000" and "250.000" use the dot as thousands separator.
        if len(parts) > 2 or len(parts[1]) == 3:
            return text.replace(".", "")
    return text


def parse_price(text: str | None) -> ParsedPrice | None:
    """Extract an amount and currency from free-form price text."""

    if not text:
        return None
    match = _NUMBER_RE.search(text)
    if not match:
        return None
    number = _normalise_number(match.group(0).rstrip(".,"))
    try:
        amount = float(number)
    except ValueError:
        return None
    upper = text.upper()
    if any(marker in upper for marker in _CRC_MARKERS):
        currency = "CRC"
    elif any(marker in upper for marker in _USD_MARKERS):
        currency = "USD"
    elif amount > CRC_AMOUNT_HINT:
        currency = "CRC"
    else:
        currency = "USD"
    return ParsedPrice(amount=amount, currency=currency)


def to_usd(amount: float, currency: str | None, crc_rate: float) -> float:
    if currency and currency.upper() == "CRC":
        return round(amount / crc_rate, 2)
    return amount


def sanitize_text(value: str | None) -> str:
    """Strip markup and collapse whitespace."""

    if not value:
        return ""
    if "<" in value and ">" in value:
        value = HTMLParser(value).text(separator=" ")
    return _WHITESPACE_RE.sub(" ", unescape(value)).strip()


def generate_id(
    source: str,
    external_id: str | None = None,
    *,
    title: str = "",
    location: str = "",
    price: float | None = None,
) -> str:
    """Deterministic listing id; the external id wins when present."""

    if external_id:
        key = f"{source}:{external_id}"
    else:
        key = f"{title}|{location}|{price if price is not None else ''}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


class CandidateNormalizer:
    """Validate a :class:`RawListing` and build the pending record for it."""

    def __init__(self, crc_rate: float = 500.0) -> None:
        self.crc_rate = crc_rate

    def resolve_price(self, raw: RawListing) -> float | None:
        if raw.price_amount is not None:
            currency = raw.price_currency
            if currency is None:
                parsed = parse_price(raw.price_text)
                currency = parsed.currency if parsed else "USD"
            return to_usd(raw.price_amount, currency, self.crc_rate)
        parsed = parse_price(raw.price_text)
        if parsed is None:
            return None
        return to_usd(parsed.amount, raw.price_currency or parsed.currency, self.crc_rate)

    def normalize(self, raw: RawListing) -> ListingRecord:
        title = sanitize_text(raw.title)
        location = sanitize_text(raw.location_text)
        price = self.resolve_price(raw)

        missing = [
            name
            for name, present in (
                ("title", bool(title)),
                ("price", price is not None and price >= 0),
                ("location", bool(location)),
            )
            if not present
        ]
        if missing:
            raise InvalidCandidateError(raw.source, missing)

        listing_id = generate_id(
            raw.source, raw.external_id, title=title, location=location, price=price
        )
        description = sanitize_text(raw.description) or None
        try:
            return ListingRecord(
                id=listing_id,
                source=raw.source,
                external_id=raw.external_id,
                title=title,
                description=description,
                location=location,
                price_usd=price,
                price_text=raw.price_text,
                images=raw.images,
                url=raw.url,
                property_type=raw.property_type,
                state=ListingState.PENDING,
                scraped_at=raw.scraped_at,
                last_updated=raw.scraped_at,
            )
        except ValidationError as exc:
            fields = sorted({str(error["loc"][0]) for error in exc.errors() if error["loc"]})
            raise InvalidCandidateError(raw.source, fields or ["record"]) from exc


__all__ = [
    "CandidateNormalizer",
    "ParsedPrice",
    "generate_id",
    "parse_price",
    "sanitize_text",
    "to_usd",
]
