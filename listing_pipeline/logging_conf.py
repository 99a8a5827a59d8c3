"""Logging configuration built around structlog JSON logging.

Every pipeline run writes its own audit file under ``logs/runs`` so that a
huge or damaged log from an earlier run never blocks the next one. The global
``pipeline.log``/``error.log`` files and the console receive the same events.
"""

from __future__ import annotations

import logging
import logging.config
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator

import structlog

LOGGER_NAME = "listing_pipeline"
JSON_FORMATTER = "pythonjsonlogger.json.JsonFormatter"

_LOGGING_INITIALISED = False
_LOG_DIR: Path | None = None


def _default_log_dir() -> Path:
    return Path.cwd() / "logs"


def current_log_dir() -> Path:
    return _LOG_DIR or _default_log_dir()


def configure_logging(
    verbose: bool = False,
    level: str | None = None,
    log_dir: Path | None = None,
) -> structlog.stdlib.BoundLogger:
    """Configure structlog + stdlib handlers and return application logger."""

    global _LOGGING_INITIALISED, _LOG_DIR
    effective_level = "DEBUG" if verbose else (level or "INFO").upper()

    if not _LOGGING_INITIALISED:
        log_dir = (log_dir or _default_log_dir()).resolve()
        runs_dir = log_dir / "runs"
        runs_dir.mkdir(parents=True, exist_ok=True)
        pipeline_log = log_dir / "pipeline.log"
        error_log = log_dir / "error.log"
        pipeline_log.touch(exist_ok=True)
        error_log.touch(exist_ok=True)
        _LOG_DIR = log_dir

        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "plain": {
                        "()": JSON_FORMATTER,
                        "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                    }
                },
                "handlers": {
                    "console": {
                        "class": "logging.StreamHandler",
                        "level": effective_level,
                        "formatter": "plain",
                    },
                    "pipeline_file": {
                        "class": "logging.FileHandler",
                        "level": "INFO",
                        "filename": str(pipeline_log),
                        "formatter": "plain",
                        "encoding": "utf-8",
                    },
                    "error_file": {
                        "class": "logging.FileHandler",
                        "level": "ERROR",
                        "filename": str(error_log),
                        "formatter": "plain",
                        "encoding": "utf-8",
                    },
                },
                "loggers": {
                    LOGGER_NAME: {
                        "handlers": ["console", "pipeline_file", "error_file"],
                        "level": effective_level,
                        "propagate": False,
                    },
                },
            }
        )

        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=False,
        )
        _LOGGING_INITIALISED = True
    elif verbose or level:
        set_level(effective_level)
    return structlog.get_logger(LOGGER_NAME)


def set_level(level: str) -> None:
    """Adjust the minimum level; debug events are elided unless it allows them."""

    py_logger = logging.getLogger(LOGGER_NAME)
    py_logger.setLevel(level)
    for handler in py_logger.handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(
            handler, logging.FileHandler
        ):
            handler.setLevel(level)


def new_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S-%f")


@dataclass(slots=True)
class RunLog:
    """Audit destination dedicated to one pipeline run."""

    run_id: str
    path: Path
    logger: structlog.stdlib.BoundLogger
    handler: logging.FileHandler
    started: float

    def close(self, **stats: object) -> None:
        self.logger.info(
            "run_log_closed",
            duration_ms=round((time.monotonic() - self.started) * 1000, 1),
            log_file=str(self.path),
            **stats,
        )
        py_logger = logging.getLogger(LOGGER_NAME)
        py_logger.removeHandler(self.handler)
        self.handler.close()


def open_run_log(
    run_id: str | None = None,
    log_dir: Path | None = None,
    level: str | None = None,
) -> RunLog:
    """Attach a fresh JSON-lines file handler for a single run."""

    logger = configure_logging(level=level, log_dir=log_dir)
    run_id = run_id or new_run_id()
    runs_dir = (log_dir or current_log_dir()) / "runs"
    runs_dir.mkdir(parents=True, exist_ok=True)
    path = runs_dir / f"run-{run_id}.log"

    py_logger = logging.getLogger(LOGGER_NAME)
    handler = logging.FileHandler(path, encoding="utf-8")
    # Reuse the same JSON formatter as the global logger
    if py_logger.handlers:
        handler.setFormatter(py_logger.handlers[0].formatter)
    handler.setLevel(logging.DEBUG)
    py_logger.addHandler(handler)

    bound = logger.bind(run_id=run_id)
    bound.info("run_log_opened", log_file=str(path))
    return RunLog(run_id=run_id, path=path, logger=bound, handler=handler, started=time.monotonic())


@contextmanager
def run_logging(
    run_id: str | None = None,
    log_dir: Path | None = None,
    level: str | None = None,
) -> Iterator[RunLog]:
    run_log = open_run_log(run_id, log_dir, level)
    try:
        yield run_log
    finally:
        run_log.close()


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    """Return the last N lines from a log file."""

    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        lines = stream.readlines()
    return lines[-line_count:]


def available_run_logs(log_dir: Path | None = None) -> Iterable[Path]:
    """Yield available per-run log file paths, oldest first."""

    runs_dir = (log_dir or current_log_dir()) / "runs"
    if not runs_dir.exists():
        return []
    return sorted(p for p in runs_dir.glob("run-*.log"))


def rotate_logs(
    log_dir: Path | None = None,
    max_age_days: int = 14,
    now: float | None = None,
) -> list[Path]:
    """Delete per-run logs whose modification time is older than ``max_age_days``."""

    cutoff = (now if now is not None else time.time()) - max_age_days * 86400
    removed: list[Path] = []
    for path in available_run_logs(log_dir):
        if path.stat().st_mtime < cutoff:
            path.unlink()
            removed.append(path)
    return removed


__all__ = [
    "LOGGER_NAME",
    "RunLog",
    "available_run_logs",
    "configure_logging",
    "current_log_dir",
    "new_run_id",
    "open_run_log",
    "rotate_logs",
    "run_logging",
    "set_level",
    "tail_log",
]
