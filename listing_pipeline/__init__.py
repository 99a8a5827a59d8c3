"""Listing ingestion and lifecycle pipeline."""

__version__ = "0.1.0"
