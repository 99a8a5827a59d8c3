"""Flat-file persistence for listing collections, price history and backups.

Every write goes to a temporary file in the target directory which is then
renamed over the target, so readers only ever see the previous complete
document or the new complete document.
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable

import structlog
from pydantic import ValidationError

from ..errors import CollectionCorruptError
from ..models import ListingRecord, ListingState, utcnow

BACKUP_NAME_FORMAT = "%Y%m%d-%H%M%S-%f"


def atomic_write_json(path: Path, payload: Any) -> None:
    """Replace ``path`` with ``payload`` serialised as JSON, never partially."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as stream:
            json.dump(payload, stream, indent=2, ensure_ascii=False)
            stream.write("\n")
            stream.flush()
            os.fsync(stream.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def load_json(path: Path) -> Any:
    """Parse ``path``; undecodable content raises :class:`CollectionCorruptError`."""

    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise CollectionCorruptError(str(path), f"not utf-8: {exc}") from exc
    if not text.strip():
        raise CollectionCorruptError(str(path), "empty file")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise CollectionCorruptError(str(path), f"invalid JSON: {exc}") from exc


def extract_properties(payload: Any, path: Path | str = "<memory>") -> list[dict[str, Any]]:
    """Accept both ``{"properties": [...]}`` and the legacy bare-array shape."""

    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict) and isinstance(payload.get("properties", []), list):
        items = payload.get("properties", [])
    else:
        raise CollectionCorruptError(str(path), "expected a list or an object with 'properties'")
    if not all(isinstance(item, dict) for item in items):
        raise CollectionCorruptError(str(path), "collection entries must be objects")
    return items


class CollectionStore:
    """Read and write the per-state collection files plus auxiliary documents."""

    def __init__(
        self,
        data_dir: Path,
        *,
        max_backups: int = 10,
        logger: structlog.stdlib.BoundLogger | None = None,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self.data_dir = data_dir
        self.properties_dir = data_dir / "properties"
        self.backups_dir = data_dir / "backups"
        self.max_backups = max_backups
        self.logger = logger or structlog.get_logger("listing_pipeline").bind(component="storage")
        self.now = now
        self.properties_dir.mkdir(parents=True, exist_ok=True)
        self.backups_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------
    def collection_path(self, state: ListingState) -> Path:
        return self.properties_dir / f"{state.value}.json"

    @property
    def price_history_path(self) -> Path:
        return self.data_dir / "price-history.json"

    @property
    def notifications_path(self) -> Path:
        return self.data_dir / "price-notifications.json"

    def data_files(self) -> list[Path]:
        files = [self.collection_path(state) for state in ListingState]
        files.extend([self.price_history_path, self.notifications_path])
        return files

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------
    def read_collection(self, state: ListingState) -> list[ListingRecord]:
        """Return the records of one state; never raises on bad content."""

        path = self.collection_path(state)
        if not path.exists():
            return []
        try:
            items = extract_properties(load_json(path), path)
        except CollectionCorruptError as exc:
            self.logger.warning(
                "collection_corrupt", state=state.value, path=str(path), reason=exc.reason
            )
            return self.repair_collection(state)
        return self._validate_items(items, state)

    def write_collection(
        self, state: ListingState, records: Iterable[ListingRecord], **metadata: Any
    ) -> None:
        documents = [record.to_document() for record in records]
        payload: dict[str, Any] = {
            "properties": documents,
            "last_updated": self.now().isoformat(),
            "total_count": len(documents),
        }
        payload.update(metadata)
        atomic_write_json(self.collection_path(state), payload)
        self.logger.debug("collection_written", state=state.value, total_count=len(documents))

    def validate_collection(self, state: ListingState) -> str | None:
        """Return a corruption reason, or ``None`` if the file is missing or valid."""

        path = self.collection_path(state)
        if not path.exists():
            return None
        try:
            extract_properties(load_json(path), path)
        except CollectionCorruptError as exc:
            return exc.reason
        return None

    def repair_collection(self, state: ListingState) -> list[ListingRecord]:
        """Restore ``state`` from the newest valid backup, or reset it to empty."""

        path = self.collection_path(state)
        relative = path.relative_to(self.data_dir)
        backup = self.latest_valid_backup(relative)
        if backup is not None:
            self._restore_file(backup / relative, path)
            self.logger.warning(
                "collection_restored", state=state.value, backup=backup.name, path=str(path)
            )
            items = extract_properties(load_json(path), path)
            return self._validate_items(items, state)
        self.write_collection(state, [])
        self.logger.warning("collection_reset", state=state.value, path=str(path))
        return []

    def _validate_items(
        self, items: list[dict[str, Any]], state: ListingState
    ) -> list[ListingRecord]:
        records: list[ListingRecord] = []
        for index, item in enumerate(items):
            try:
                records.append(ListingRecord.model_validate(item))
            except ValidationError as exc:
                self.logger.warning(
                    "record_invalid",
                    state=state.value,
                    index=index,
                    record_id=item.get("id"),
                    error=str(exc.errors()[0]["msg"]) if exc.errors() else str(exc),
                )
        return records

    # ------------------------------------------------------------------
    # JSON arrays (price history, notifications)
    # ------------------------------------------------------------------
    def read_json_array(self, path: Path) -> list[dict[str, Any]]:
        if not path.exists():
            return []
        try:
            payload = load_json(path)
            if not isinstance(payload, list):
                raise CollectionCorruptError(str(path), "expected a JSON array")
        except CollectionCorruptError as exc:
            self.logger.warning("json_array_corrupt", path=str(path), reason=exc.reason)
            return self._repair_array(path)
        return [item for item in payload if isinstance(item, dict)]

    def write_json_array(self, path: Path, items: list[Any]) -> None:
        atomic_write_json(path, items)

    def _repair_array(self, path: Path) -> list[dict[str, Any]]:
        relative = path.relative_to(self.data_dir)
        backup = self.latest_valid_backup(relative)
        if backup is not None:
            self._restore_file(backup / relative, path)
            self.logger.warning("json_array_restored", path=str(path), backup=backup.name)
            return [item for item in load_json(path) if isinstance(item, dict)]
        atomic_write_json(path, [])
        self.logger.warning("json_array_reset", path=str(path))
        return []

    def read_document(self, path: Path) -> dict[str, Any]:
        """Read a JSON object; missing or corrupt files read as empty."""

        if not path.exists():
            return {}
        try:
            payload = load_json(path)
        except CollectionCorruptError as exc:
            self.logger.warning("document_corrupt", path=str(path), reason=exc.reason)
            return {}
        if not isinstance(payload, dict):
            self.logger.warning("document_corrupt", path=str(path), reason="expected an object")
            return {}
        return payload

    def write_document(self, path: Path, payload: dict[str, Any]) -> None:
        atomic_write_json(path, payload)

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------
    def create_backup(self) -> Path:
        """Copy every existing data file into a new timestamped backup directory."""

        stamp = self.now().strftime(BACKUP_NAME_FORMAT)
        taken = [path.name for path in self.backups_dir.glob(f"{stamp}*") if path.is_dir()]
        name = stamp
        if taken:
            # Zero-padded so same-stamp backups still sort oldest to newest.
            suffixes = [int(item[len(stamp) + 1 :]) for item in taken if item != stamp]
            name = f"{stamp}-{max(suffixes, default=0) + 1:03d}"
        target = self.backups_dir / name
        target.mkdir(parents=True)
        copied = 0
        for path in self.data_files():
            if not path.exists():
                continue
            destination = target / path.relative_to(self.data_dir)
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, destination)
            copied += 1
        self.logger.info("backup_created", backup=target.name, files=copied)
        self._prune_backups()
        return target

    def list_backups(self) -> list[Path]:
        """Backup directories, newest first."""

        if not self.backups_dir.exists():
            return []
        return sorted(
            (p for p in self.backups_dir.iterdir() if p.is_dir()),
            key=lambda p: p.name,
            reverse=True,
        )

    def latest_valid_backup(self, relative: Path) -> Path | None:
        for backup in self.list_backups():
            candidate = backup / relative
            if not candidate.exists():
                continue
            try:
                payload = load_json(candidate)
                if relative.parent.name == "properties":
                    extract_properties(payload, candidate)
                elif not isinstance(payload, list):
                    continue
            except CollectionCorruptError:
                continue
            return backup
        return None

    def restore_backup(self, name: str | None = None) -> Path:
        """Restore every file held by a backup (the newest when ``name`` is None)."""

        backups = self.list_backups()
        if name is None:
            if not backups:
                raise FileNotFoundError("No backups available")
            backup = backups[0]
        else:
            backup = self.backups_dir / name
            if not backup.is_dir():
                raise FileNotFoundError(f"Backup not found: {name}")
        restored = 0
        for path in self.data_files():
            source = backup / path.relative_to(self.data_dir)
            if source.exists():
                self._restore_file(source, path)
                restored += 1
        self.logger.info("backup_restored", backup=backup.name, files=restored)
        return backup

    def _restore_file(self, source: Path, target: Path) -> None:
        atomic_write_json(target, load_json(source))

    def _prune_backups(self) -> None:
        for stale in self.list_backups()[self.max_backups :]:
            shutil.rmtree(stale, ignore_errors=True)
            self.logger.debug("backup_pruned", backup=stale.name)


__all__ = [
    "CollectionStore",
    "atomic_write_json",
    "extract_properties",
    "load_json",
]
