"""Adapter for paginated JSON APIs fetched through the rate-limited client."""

from __future__ import annotations

import json

import structlog

from ..config import SourceConfig
from ..engine.fetcher import Fetcher
from ..errors import RetryExhaustedError
from ..models import RawListing
from .base import SourceAdapter, extract_items


class JsonFeedSourceAdapter(SourceAdapter):
    """Pull listings from an HTTP JSON feed, one page at a time.

    A page whose retries are exhausted is skipped; a permanent client error
    propagates and fails the whole source.
    """

    def __init__(
        self,
        source: SourceConfig,
        fetcher: Fetcher,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        super().__init__(source, logger)
        self.fetcher = fetcher
        self.skipped_pages: list[int] = []

    def scrape(self) -> list[RawListing]:
        listings: list[RawListing] = []
        # Without a page parameter every request hits the same URL.
        last_page = self.source.max_pages if self.source.page_param else 1
        for page in range(1, last_page + 1):
            params = {self.source.page_param: page} if self.source.page_param else None
            try:
                response = self.fetcher.get(
                    self.source.service_tag, self.source.target_url, params=params
                )
            except RetryExhaustedError as exc:
                self.skipped_pages.append(page)
                self.logger.warning("source_page_skipped", page=page, error=str(exc))
                continue
            try:
                payload = response.json()
            except json.JSONDecodeError as exc:
                self.skipped_pages.append(page)
                self.logger.warning("source_page_unparseable", page=page, error=str(exc))
                continue
            items = extract_items(payload, self.source.items_key)
            if not items:
                self.logger.debug("source_pagination_exhausted", page=page)
                break
            listings.extend(self.build_many(items))
        self.logger.info("source_scraped", listings=len(listings), skipped_pages=self.skipped_pages)
        return listings


__all__ = ["JsonFeedSourceAdapter"]
