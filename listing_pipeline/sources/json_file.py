"""Adapter reading a local JSON feed file."""

from __future__ import annotations

import json
from pathlib import Path

import structlog

from ..config import SourceConfig
from ..models import RawListing
from .base import SourceAdapter, extract_items


class JsonFileSourceAdapter(SourceAdapter):
    """Read listings exported to disk by an external scraper."""

    def __init__(
        self,
        source: SourceConfig,
        base_dir: Path,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        super().__init__(source, logger)
        path = source.resolved_path(base_dir)
        if path is None:
            raise ValueError(f"Source {source.name} has no path")
        self.path = path

    def scrape(self) -> list[RawListing]:
        if not self.path.exists():
            self.logger.warning("source_file_missing", path=str(self.path))
            return []
        with self.path.open("r", encoding="utf-8") as stream:
            payload = json.load(stream)
        items = extract_items(payload, self.source.items_key)
        listings = self.build_many(items)
        self.logger.info(
            "source_scraped", path=str(self.path), items=len(items), listings=len(listings)
        )
        return listings


__all__ = ["JsonFileSourceAdapter"]
