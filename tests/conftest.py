"""Shared fixtures for the listing pipeline test-suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable

import pytest

from listing_pipeline.config import ConfigLocator, ConfigRepository, PipelineConfig
from listing_pipeline.infra.storage import CollectionStore
from listing_pipeline.logging_conf import configure_logging
from listing_pipeline.models import ListingRecord, ListingState

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock whose sleeps advance time instantly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FrozenNow:
    """Callable ``now`` that tests can move forward."""

    def __init__(self, value: datetime = NOW) -> None:
        self.value = value

    def __call__(self) -> datetime:
        return self.value

    def advance(self, **kwargs: float) -> None:
        self.value += timedelta(**kwargs)


@pytest.fixture(scope="session", autouse=True)
def _session_logging(tmp_path_factory: pytest.TempPathFactory) -> None:
    configure_logging(level="INFO", log_dir=tmp_path_factory.mktemp("logs"))


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def frozen_now() -> FrozenNow:
    return FrozenNow()


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("LISTING_PIPELINE_HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def temp_config_repository(home: Path) -> Iterable[ConfigRepository]:
    repository = ConfigRepository(ConfigLocator(project_root=home))
    yield repository


@pytest.fixture
def store(tmp_path: Path, frozen_now: FrozenNow) -> CollectionStore:
    return CollectionStore(tmp_path / "data", max_backups=3, now=frozen_now)


@pytest.fixture
def make_record() -> Callable[..., ListingRecord]:
    counter = {"value": 0}

    def _builder(**overrides: Any) -> ListingRecord:
        counter["value"] += 1
        index = counter["value"]
        base: dict[str, Any] = {
            "id": f"listing-{index}",
            "source": "example",
            "external_id": str(index),
            "title": f"Listing number {index}",
            "location": "Escazú, San José",
            "price_usd": 250_000.0,
            "price_text": "$250,000",
            "images": [f"https://img.example/{index}.jpg"],
            "state": ListingState.ACTIVE,
            "scraped_at": NOW - timedelta(days=1),
            "last_updated": NOW - timedelta(days=1),
        }
        base.update(overrides)
        return ListingRecord(**base)

    return _builder


@pytest.fixture
def pipeline_config() -> Callable[..., PipelineConfig]:
    def _builder(**overrides: Any) -> PipelineConfig:
        base: dict[str, Any] = {
            "retry": {"max_attempts": 3, "base_delay": 1.0},
            "rate_limits": {"default": {"requests_per_window": 1, "window_seconds": 1.0}},
        }
        base.update(overrides)
        return PipelineConfig.model_validate(base)

    return _builder
