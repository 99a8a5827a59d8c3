from __future__ import annotations

import pytest

from listing_pipeline.engine.normalize import (
    CandidateNormalizer,
    generate_id,
    parse_price,
    sanitize_text,
    to_usd,
)
from listing_pipeline.errors import InvalidCandidateError
from listing_pipeline.models import ListingState, RawListing


@pytest.mark.parametrize(
    ("text", "amount", "currency"),
    [
        ("$250,000", 250_000.0, "USD"),
        ("$1,250.75", 1250.75, "USD"),
        ("₡125.000.000", 125_000_000.0, "CRC"),
        ("1.250,50 colones", 1250.5, "CRC"),
        ("Precio 150000", 150_000.0, "CRC"),
        ("USD 99.5", 99.5, "USD"),
        ("250.000", 250_000.0, "CRC"),
    ],
)
def test_parse_price_formats(text: str, amount: float, currency: str) -> None:
    parsed = parse_price(text)
    assert parsed is not None
    assert parsed.amount == amount
    assert parsed.currency == currency


def test_parse_price_without_digits() -> None:
    assert parse_price("Consultar precio") is None
    assert parse_price("") is None
    assert parse_price(None) is None


def test_to_usd_converts_colones_only() -> None:
    assert to_usd(1_000_000, "CRC", 500.0) == 2000.0
    assert to_usd(1_000_000, "crc", 500.0) == 2000.0
    assert to_usd(1500.0, "USD", 500.0) == 1500.0


def test_sanitize_text_strips_markup() -> None:
    assert sanitize_text("<p>Casa &amp; lote</p>\n   grande") == "Casa & lote grande"
    assert sanitize_text("  plain   text ") == "plain text"
    assert sanitize_text(None) == ""


def test_generate_id_is_deterministic() -> None:
    by_external = generate_id("encuentra24", "42")
    assert by_external == generate_id("encuentra24", "42", title="ignored")
    assert by_external != generate_id("other", "42")

    fallback = generate_id("encuentra24", title="Casa", location="Escazú", price=100.0)
    assert fallback == generate_id("another", title="Casa", location="Escazú", price=100.0)
    assert len(fallback) == 64


def test_normalize_builds_pending_record() -> None:
    raw = RawListing(
        source="encuentra24",
        external_id=42,
        title="  Casa <b>bonita</b> ",
        description="<p>Tres habitaciones</p>",
        price_text="₡50.000.000",
        location_text="Escazú,  San José",
        images=["https://img.example/1.jpg", ""],
        scraped_at="2024-05-01T10:00:00Z",
    )

    record = CandidateNormalizer(crc_rate=500.0).normalize(raw)

    assert record.id == generate_id("encuentra24", "42")
    assert record.title == "Casa bonita"
    assert record.description == "Tres habitaciones"
    assert record.location == "Escazú, San José"
    assert record.price_usd == 100_000.0
    assert record.images == ["https://img.example/1.jpg"]
    assert record.state is ListingState.PENDING
    assert record.scraped_at == record.last_updated
    assert record.scraped_at.year == 2024


def test_normalize_prefers_structured_amount() -> None:
    raw = RawListing(
        source="feed",
        title="Lote",
        price_amount=1_000_000,
        price_currency="CRC",
        price_text="see listing",
        location_text="Heredia",
    )
    assert CandidateNormalizer(crc_rate=500.0).normalize(raw).price_usd == 2000.0


def test_normalize_reports_missing_fields() -> None:
    raw = RawListing(source="feed", title="Casa", price_text="Consultar")

    with pytest.raises(InvalidCandidateError) as excinfo:
        CandidateNormalizer().normalize(raw)

    assert excinfo.value.missing == ["price", "location"]
    assert excinfo.value.source == "feed"
