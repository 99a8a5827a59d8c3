"""Infra layer utilities (flat-file storage, backups)."""

from .storage import CollectionStore, atomic_write_json

__all__ = ["CollectionStore", "atomic_write_json"]
