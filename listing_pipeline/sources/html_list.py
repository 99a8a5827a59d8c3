"""Adapter extracting listing cards from HTML index pages."""

from __future__ import annotations

from typing import Any
from urllib.parse import urljoin

import structlog
from selectolax.parser import HTMLParser, Node

from ..config import SourceConfig
from ..engine.fetcher import Fetcher
from ..errors import RetryExhaustedError
from ..models import RawListing
from .base import SourceAdapter

# Fields that collect every match instead of the first.
MULTI_VALUE_FIELDS = {"images"}
URL_FIELDS = {"url", "images"}


def split_selector(selector: str) -> tuple[str, str]:
    """``"a.title::attr:href"`` -> ``("a.title", "attr:href")``."""

    if "::" in selector:
        css, mode = selector.split("::", 1)
        return css.strip(), mode.strip().lower()
    return selector.strip(), "text"


def node_value(node: Node, mode: str) -> str | None:
    if mode == "html":
        return node.html
    if mode.startswith("attr:"):
        return node.attributes.get(mode.split(":", 1)[1])
    return node.text(separator=" ", strip=True)


class HtmlListSourceAdapter(SourceAdapter):
    """Each node matching ``entry_pattern`` is one listing card.

    ``detail_pattern`` maps listing fields to CSS selectors evaluated inside
    the card. A list of selectors is tried in order until one yields text.
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
            items = self.parse_cards(response.text, response.url)
            if not items:
                self.logger.debug("source_pagination_exhausted", page=page)
                break
            listings.extend(self.build_many(items))
        self.logger.info("source_scraped", listings=len(listings), skipped_pages=self.skipped_pages)
        return listings

    def parse_cards(self, html: str, base_url: str) -> list[dict[str, Any]]:
        parser = HTMLParser(html)
        cards: list[dict[str, Any]] = []
        for node in parser.css(self.source.entry_pattern or ""):
            card: dict[str, Any] = {}
            for field, selector_config in self.source.detail_pattern.items():
                selectors = selector_config if isinstance(selector_config, list) else [selector_config]
                if field in MULTI_VALUE_FIELDS:
                    card[field] = self._collect(node, selectors, base_url)
                    continue
                value = self._first(node, selectors)
                if value and field in URL_FIELDS:
                    value = urljoin(base_url, value)
                if value:
                    card[field] = value
            if "external_id" not in card and card.get("url"):
                card["external_id"] = card["url"].rstrip("/").rsplit("/", 1)[-1]
            cards.append(card)
        return cards

    @staticmethod
    def _first(node: Node, selectors: list[str]) -> str | None:
        for selector in selectors:
            css, mode = split_selector(selector)
            if not css:
                continue
            match = node.css_first(css)
            if match is None:
                continue
            value = node_value(match, mode)
            if value and value.strip():
                return value.strip()
        return None

    @staticmethod
    def _collect(node: Node, selectors: list[str], base_url: str) -> list[str]:
        values: list[str] = []
        for selector in selectors:
            css, mode = split_selector(selector)
            if not css:
                continue
            for match in node.css(css):
                value = node_value(match, mode)
                if value and value.strip():
                    resolved = urljoin(base_url, value.strip())
                    if resolved not in values:
                        values.append(resolved)
        return values


__all__ = ["HtmlListSourceAdapter", "node_value", "split_selector"]
