"""Configuration loading helpers for the listing pipeline."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from ..errors import ConfigurationError
from .models import PipelineConfig, SourceConfig

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
CONFIG_STEM = "pipeline_config"
HOME_ENV_VAR = "LISTING_PIPELINE_HOME"


def _read_file(path: Path) -> dict:
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {path}")
    return data


def _write_file(path: Path, payload: dict) -> None:
    with path.open("w", encoding="utf-8") as stream:
        if path.suffix in (".yaml", ".yml"):
            yaml.safe_dump(payload, stream, allow_unicode=True, sort_keys=False)
        else:
            json.dump(payload, stream, indent=2, ensure_ascii=False)


@dataclass(slots=True)
class ConfigLocator:
    """Resolve important paths from project root."""

    project_root: Path | None = None
    data_dir: Path | None = None
    properties_dir: Path | None = None
    backups_dir: Path | None = None
    purging_dir: Path | None = None
    logs_dir: Path | None = None

    def __post_init__(self) -> None:
        env_root = os.environ.get(HOME_ENV_VAR)
        if self.project_root is not None:
            root = Path(self.project_root).expanduser().resolve()
        elif env_root:
            root = Path(env_root).expanduser().resolve()
        else:
            root = Path.cwd().resolve()
        self.project_root = root
        self.data_dir = (root / "data").resolve()
        self.properties_dir = (self.data_dir / "properties").resolve()
        self.backups_dir = (self.data_dir / "backups").resolve()
        self.purging_dir = (self.data_dir / "purging").resolve()
        self.logs_dir = (root / "logs").resolve()
        self.ensure_directories()

    def ensure_directories(self) -> None:
        for directory in (
            self.data_dir,
            self.properties_dir,
            self.backups_dir,
            self.purging_dir,
            self.logs_dir,
        ):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise ConfigurationError(f"Cannot create directory {directory}: {exc}") from exc

    def config_path(self) -> Path:
        """Existing config file in any supported format, else the YAML default."""

        for extension in CONFIG_EXTENSIONS:
            candidate = self.data_dir / f"{CONFIG_STEM}{extension}"
            if candidate.exists():
                return candidate
        return self.data_dir / f"{CONFIG_STEM}{CONFIG_EXTENSIONS[0]}"

    def price_history_path(self) -> Path:
        return self.data_dir / "price-history.json"

    def notifications_path(self) -> Path:
        return self.data_dir / "price-notifications.json"

    def purge_record_path(self) -> Path:
        return self.purging_dir / "last-purge.json"


class ConfigRepository:
    """Repository encapsulating config IO and schema validation."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._cache: PipelineConfig | None = None

    def load_config(self) -> PipelineConfig:
        if self._cache is not None:
            return self._cache
        path = self.locator.config_path()
        if path.exists():
            try:
                payload = _read_file(path)
                config = PipelineConfig.model_validate(payload)
            except (ValueError, yaml.YAMLError) as exc:
                raise ConfigurationError(f"Invalid configuration {path}: {exc}") from exc
        else:
            config = PipelineConfig()
            self.save_config(config)
        self._cache = config
        return config

    def save_config(self, config: PipelineConfig) -> None:
        path = self.locator.config_path()
        payload = config.model_dump(mode="json", exclude_none=True)
        _write_file(path, payload)
        self._cache = config

    def reload(self) -> PipelineConfig:
        self._cache = None
        return self.load_config()

    # ------------------------------------------------------------------
    # Source helpers
    # ------------------------------------------------------------------
    def list_sources(self, include_disabled: bool = False) -> list[SourceConfig]:
        sources = self.load_config().sources
        if include_disabled:
            return list(sources)
        return [source for source in sources if source.enabled]

    def load_source(self, name: str) -> SourceConfig:
        try:
            return self.load_config().source(name)
        except KeyError:
            raise FileNotFoundError(f"Source configuration not found: {name}") from None

    def save_source(self, source: SourceConfig) -> None:
        config = self.load_config()
        sources = [existing for existing in config.sources if existing.name != source.name]
        sources.append(source)
        self.save_config(config.model_copy(update={"sources": sources}))

    def delete_source(self, name: str) -> None:
        config = self.load_config()
        sources = [existing for existing in config.sources if existing.name != name]
        self.save_config(config.model_copy(update={"sources": sources}))


__all__ = ["CONFIG_EXTENSIONS", "ConfigLocator", "ConfigRepository", "HOME_ENV_VAR"]
