"""Source adapter SPI and built-in implementations."""

from __future__ import annotations

from pathlib import Path

import structlog

from ..config import SourceConfig, SourceKind
from ..engine.fetcher import Fetcher
from .base import SourceAdapter
from .html_list import HtmlListSourceAdapter
from .json_feed import JsonFeedSourceAdapter
from .json_file import JsonFileSourceAdapter


def build_adapter(
    source: SourceConfig,
    *,
    fetcher: Fetcher,
    base_dir: Path,
    logger: structlog.stdlib.BoundLogger | None = None,
) -> SourceAdapter:
    if source.kind is SourceKind.JSON_FILE:
        return JsonFileSourceAdapter(source, base_dir, logger=logger)
    if source.kind is SourceKind.JSON_FEED:
        return JsonFeedSourceAdapter(source, fetcher, logger=logger)
    if source.kind is SourceKind.HTML_LIST:
        return HtmlListSourceAdapter(source, fetcher, logger=logger)
    raise ValueError(f"Unsupported source kind: {source.kind}")


__all__ = [
    "HtmlListSourceAdapter",
    "JsonFeedSourceAdapter",
    "JsonFileSourceAdapter",
    "SourceAdapter",
    "build_adapter",
]
