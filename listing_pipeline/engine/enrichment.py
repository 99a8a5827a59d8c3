"""Secondary lookups that decorate admitted listings."""

from __future__ import annotations

import re
from typing import Any, List, Optional, Protocol

import structlog

from ..models import ListingRecord

_PROVINCES = (
    (("san josé", "san jose", "sj"), "San José"),
    (("alajuela",), "Alajuela"),
    (("cartago",), "Cartago"),
    (("heredia",), "Heredia"),
    (("guanacaste",), "Guanacaste"),
    (("puntarenas",), "Puntarenas"),
    (("limón", "limon"), "Limón"),
)
DEFAULT_PROVINCE = "San José"


def normalize_address(address: str) -> str:
    text = re.sub(r"\s+", " ", address.strip())
    text = re.sub(r",\s*Costa Rica$", "", text, flags=re.IGNORECASE)
    text = re.sub(r",\s*CR$", "", text, flags=re.IGNORECASE)
    text = re.sub(r"\bCR\b", "Costa Rica", text)
    text = re.sub(r"\bSJ\b", "San José", text)
    text = re.sub(r"\bProv\.", "Provincia", text)
    return text.strip()


def extract_province(address: str) -> str:
    """Standard province name for a Costa Rican address; San José when unknown."""

    lowered = address.lower()
    for aliases, name in _PROVINCES:
        for alias in aliases:
            if alias == "sj":
                if re.search(r"\bsj\b", lowered):
                    return name
            elif alias in lowered:
                return name
    return DEFAULT_PROVINCE


class Enricher(Protocol):
    """Behaviour expected by the enrichment chain."""

    name: str

    def enrich(self, record: ListingRecord) -> dict[str, Any]:
        """Return keys to merge into ``record.enrichment``."""


class ProvinceEnricher:
    name = "province"

    def enrich(self, record: ListingRecord) -> dict[str, Any]:
        if not record.location:
            return {}
        return {
            "province": extract_province(record.location),
            "normalized_address": normalize_address(record.location),
        }


class EnrichmentChain:
    """Run enrichers in order; a failing enricher leaves the others' output."""

    def __init__(
        self,
        enrichers: Optional[List[Enricher]] = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.enrichers = enrichers if enrichers is not None else [ProvinceEnricher()]
        self.logger = logger or structlog.get_logger("listing_pipeline").bind(component="enrichment")

    def add_enricher(self, enricher: Enricher) -> None:
        self.enrichers.append(enricher)

    def apply(self, record: ListingRecord) -> ListingRecord:
        enrichment = dict(record.enrichment)
        failed: list[str] = []
        for enricher in self.enrichers:
            try:
                enrichment.update(enricher.enrich(record))
            except Exception as exc:  # noqa: BLE001 - enrichment never blocks admission
                failed.append(enricher.name)
                self.logger.warning(
                    "enrichment_failed",
                    listing_id=record.id,
                    enricher=enricher.name,
                    error=str(exc),
                )
        if failed:
            enrichment["failed"] = failed
        return record.model_copy(update={"enrichment": enrichment})


__all__ = [
    "EnrichmentChain",
    "Enricher",
    "ProvinceEnricher",
    "extract_province",
    "normalize_address",
]
