from __future__ import annotations

import json

import httpx
import pytest

from listing_pipeline.config import SourceConfig
from listing_pipeline.engine.fetcher import Fetcher
from listing_pipeline.errors import PermanentFetchError
from listing_pipeline.sources import (
    HtmlListSourceAdapter,
    JsonFeedSourceAdapter,
    JsonFileSourceAdapter,
    build_adapter,
)
from listing_pipeline.sources.base import extract_items, lookup
from listing_pipeline.sources.html_list import split_selector

FIELD_MAP = {
    "external_id": "id",
    "price_text": "price.display",
    "location_text": "address.city",
    "images": "photos",
}


@pytest.fixture
def feed_fetcher(pipeline_config, fake_clock):
    fetchers: list[Fetcher] = []

    def _build(handler) -> Fetcher:
        config = pipeline_config(
            retry={"max_attempts": 1},
            rate_limits={"default": {"requests_per_window": 100}},
        )
        fetcher = Fetcher(config, clock=fake_clock, transport=httpx.MockTransport(handler))
        fetchers.append(fetcher)
        return fetcher

    yield _build
    for fetcher in fetchers:
        fetcher.close()


def _item(external_id: int, title: str) -> dict:
    return {
        "id": external_id,
        "title": title,
        "price": {"display": "$150,000"},
        "address": {"city": "Atenas, Alajuela"},
        "photos": ["https://img.example/a.jpg"],
    }


def test_lookup_and_extract_items() -> None:
    payload = {"data": {"results": [{"a": {"b": [1, {"c": "deep"}]}}]}}
    assert lookup(payload, "data.results.0.a.b.1.c") == "deep"
    assert lookup(payload, "data.missing.key") is None
    assert extract_items(payload, "data.results") == payload["data"]["results"]
    assert extract_items({"listings": [1]}, None) == [1]
    assert extract_items([1, 2], None) == [1, 2]
    assert extract_items({"other": 1}, None) == []


def test_json_file_adapter_maps_fields(tmp_path) -> None:
    feed = tmp_path / "feeds" / "export.json"
    feed.parent.mkdir()
    feed.write_text(
        json.dumps({"properties": [_item(1, "Casa Atenas"), "not-an-object", _item(2, "Lote")]}),
        encoding="utf-8",
    )
    source = SourceConfig(name="export", path="feeds/export.json", field_map=FIELD_MAP)

    adapter = JsonFileSourceAdapter(source, tmp_path)
    listings = adapter.scrape()

    assert [raw.external_id for raw in listings] == ["1", "2"]
    assert listings[0].source == "export"
    assert listings[0].price_text == "$150,000"
    assert listings[0].location_text == "Atenas, Alajuela"
    assert listings[0].images == ["https://img.example/a.jpg"]
    assert adapter.rejected == 1


def test_json_file_adapter_rejects_unshaped_items(tmp_path) -> None:
    feed = tmp_path / "export.json"
    bad = _item(3, "Finca")
    bad["photos"] = 5
    feed.write_text(json.dumps([bad, _item(4, "Casa")]), encoding="utf-8")
    adapter = JsonFileSourceAdapter(
        SourceConfig(name="export", path=str(feed), field_map=FIELD_MAP), tmp_path
    )

    assert [raw.external_id for raw in adapter.scrape()] == ["4"]
    assert adapter.rejected == 1


def test_json_file_adapter_missing_file_returns_nothing(tmp_path) -> None:
    adapter = JsonFileSourceAdapter(SourceConfig(name="gone", path="nope.json"), tmp_path)
    assert adapter.scrape() == []


def test_json_feed_adapter_paginates_and_skips_failed_pages(feed_fetcher) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        if page == 2:
            return httpx.Response(503)
        if page == 3:
            return httpx.Response(200, json={"results": [_item(3, "Casa tres")]})
        if page == 4:
            return httpx.Response(200, json={"results": []})
        return httpx.Response(200, json={"results": [_item(page, f"Casa {page}")]})

    source = SourceConfig(
        name="feed",
        kind="json_feed",
        target_url="https://api.example.com/listings",
        items_key="results",
        page_param="page",
        max_pages=6,
        field_map=FIELD_MAP,
    )
    adapter = JsonFeedSourceAdapter(source, feed_fetcher(handler))

    listings = adapter.scrape()

    assert [raw.external_id for raw in listings] == ["1", "3"]
    assert adapter.skipped_pages == [2]


def test_json_feed_adapter_propagates_permanent_errors(feed_fetcher) -> None:
    source = SourceConfig(name="feed", kind="json_feed", target_url="https://api.example.com/x")
    adapter = JsonFeedSourceAdapter(source, feed_fetcher(lambda request: httpx.Response(403)))

    with pytest.raises(PermanentFetchError):
        adapter.scrape()


def test_json_feed_adapter_skips_unparseable_page(feed_fetcher) -> None:
    source = SourceConfig(name="feed", kind="json_feed", target_url="https://api.example.com/x")
    adapter = JsonFeedSourceAdapter(
        source, feed_fetcher(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
    )

    assert adapter.scrape() == []
    assert adapter.skipped_pages == [1]


def test_unpaginated_feed_is_fetched_once_even_when_skipped(feed_fetcher) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(503)

    source = SourceConfig(
        name="feed", kind="json_feed", target_url="https://api.example.com/x", max_pages=5
    )
    adapter = JsonFeedSourceAdapter(source, feed_fetcher(handler))

    assert adapter.scrape() == []
    assert adapter.skipped_pages == [1]
    assert len(requests) == 1


LIST_PAGE = """
<html><body>
  <div class="card">
    <a class="title" href="/listing/123/">Casa Linda</a>
    <span class="price">$150,000</span>
    <span class="loc">Atenas, Alajuela</span>
    <img src="/img/1.jpg"><img src="/img/2.jpg"><img src="/img/1.jpg">
  </div>
  <div class="card">
    <a class="title" href="https://other.example/p/456">Lote Grande</a>
    <span class="price">₡25.000.000</span>
    <span class="zone">Liberia</span>
  </div>
</body></html>
"""


def test_html_list_adapter_parses_cards(feed_fetcher) -> None:
    source = SourceConfig(
        name="portal",
        kind="html_list",
        target_url="https://portal.example.com/search",
        entry_pattern="div.card",
        detail_pattern={
            "title": "a.title",
            "url": "a.title::attr:href",
            "price_text": ".price",
            "location_text": [".loc", ".zone"],
            "images": "img::attr:src",
        },
    )
    adapter = HtmlListSourceAdapter(
        source, feed_fetcher(lambda request: httpx.Response(200, text=LIST_PAGE))
    )

    listings = adapter.scrape()

    assert [raw.title for raw in listings] == ["Casa Linda", "Lote Grande"]
    first, second = listings
    assert first.url == "https://portal.example.com/listing/123/"
    assert first.external_id == "123"
    assert first.images == [
        "https://portal.example.com/img/1.jpg",
        "https://portal.example.com/img/2.jpg",
    ]
    assert second.location_text == "Liberia"
    assert second.external_id == "456"
    assert second.images == []


def test_unpaginated_html_source_is_fetched_once(feed_fetcher) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(502)

    source = SourceConfig(
        name="portal",
        kind="html_list",
        target_url="https://portal.example.com/search",
        entry_pattern="div.card",
        detail_pattern={"title": "a.title"},
        max_pages=4,
    )
    adapter = HtmlListSourceAdapter(source, feed_fetcher(handler))

    assert adapter.scrape() == []
    assert adapter.skipped_pages == [1]
    assert len(requests) == 1


def test_split_selector_modes() -> None:
    assert split_selector("a.title::attr:href") == ("a.title", "attr:href")
    assert split_selector("div.body::html") == ("div.body", "html")
    assert split_selector(" .price ") == (".price", "text")


def test_build_adapter_dispatches_on_kind(tmp_path, feed_fetcher) -> None:
    fetcher = feed_fetcher(lambda request: httpx.Response(200))
    file_source = SourceConfig(name="a", path="a.json")
    feed_source = SourceConfig(name="b", kind="json_feed", target_url="https://x.example")
    html_source = SourceConfig(
        name="c", kind="html_list", target_url="https://x.example", entry_pattern="li"
    )

    assert isinstance(build_adapter(file_source, fetcher=fetcher, base_dir=tmp_path), JsonFileSourceAdapter)
    assert isinstance(build_adapter(feed_source, fetcher=fetcher, base_dir=tmp_path), JsonFeedSourceAdapter)
    assert isinstance(build_adapter(html_source, fetcher=fetcher, base_dir=tmp_path), HtmlListSourceAdapter)
