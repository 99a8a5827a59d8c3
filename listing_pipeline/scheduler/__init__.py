"""Scheduling helpers."""

from .apsched_adapter import APSchedulerAdapter, build_trigger

__all__ = ["APSchedulerAdapter", "build_trigger"]
