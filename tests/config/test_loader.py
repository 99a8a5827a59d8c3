from __future__ import annotations

import json
from pathlib import Path

import pytest

from listing_pipeline.config.loader import ConfigLocator, ConfigRepository
from listing_pipeline.config.models import PipelineConfig, SourceConfig
from listing_pipeline.errors import ConfigurationError


def test_config_locator_uses_env_and_creates_directories(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("LISTING_PIPELINE_HOME", str(tmp_path))
    locator = ConfigLocator()
    root = tmp_path.resolve()

    assert locator.project_root == root
    assert locator.properties_dir == root / "data" / "properties"
    assert locator.purge_record_path() == root / "data" / "purging" / "last-purge.json"
    assert locator.config_path() == root / "data" / "pipeline_config.yaml"
    for path in (
        locator.data_dir,
        locator.properties_dir,
        locator.backups_dir,
        locator.purging_dir,
        locator.logs_dir,
    ):
        assert path.exists()


def test_explicit_root_beats_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LISTING_PIPELINE_HOME", str(tmp_path / "env"))
    locator = ConfigLocator(project_root=tmp_path / "explicit")
    assert locator.project_root == (tmp_path / "explicit").resolve()


def test_missing_config_is_written_with_defaults(temp_config_repository: ConfigRepository) -> None:
    config = temp_config_repository.load_config()

    assert config == PipelineConfig()
    assert temp_config_repository.locator.config_path().exists()
    assert temp_config_repository.reload() == config


def test_config_repository_roundtrip(tmp_path: Path) -> None:
    repo = ConfigRepository(ConfigLocator(project_root=tmp_path))
    config = PipelineConfig(
        log_level="debug",
        crc_to_usd_rate=510.25,
        sources=[SourceConfig(name="export", path="feeds/export.json")],
    )
    repo.save_config(config)

    loaded = ConfigRepository(ConfigLocator(project_root=tmp_path)).load_config()

    assert loaded == config
    assert loaded.log_level == "DEBUG"
    assert loaded.sources[0].path == Path("feeds/export.json")


def test_json_config_file_is_discovered(tmp_path: Path) -> None:
    locator = ConfigLocator(project_root=tmp_path)
    path = locator.data_dir / "pipeline_config.json"
    path.write_text(json.dumps({"lifecycle": {"purge_after_days": 45}}), encoding="utf-8")

    config = ConfigRepository(locator).load_config()

    assert locator.config_path() == path
    assert config.lifecycle.purge_after_days == 45


def test_invalid_config_raises_configuration_error(tmp_path: Path) -> None:
    locator = ConfigLocator(project_root=tmp_path)
    locator.config_path().write_text("dedup:\n  title_threshold: 3\n", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        ConfigRepository(locator).load_config()


def test_source_cycle(temp_config_repository: ConfigRepository) -> None:
    source = SourceConfig(
        name="portal",
        kind="html_list",
        target_url="https://portal.example.com/search",
        entry_pattern="div.card",
        detail_pattern={"title": "h2", "images": ["img::attr:src"]},
    )
    temp_config_repository.save_source(source)
    temp_config_repository.save_source(SourceConfig(name="paused", path="x.json", enabled=False))

    assert temp_config_repository.reload().source("portal") == source
    assert [s.name for s in temp_config_repository.list_sources()] == ["portal"]
    assert len(temp_config_repository.list_sources(include_disabled=True)) == 2

    temp_config_repository.delete_source("portal")
    with pytest.raises(FileNotFoundError):
        temp_config_repository.load_source("portal")
