"""Exception hierarchy shared across the pipeline."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(PipelineError):
    """Raised when configuration or required directories are unusable."""


class FetchError(PipelineError):
    """Base class for outbound fetch failures."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        service: str,
        url: str,
        status_code: int | None = None,
        attempts: int = 1,
    ) -> None:
        super().__init__(message)
        self.service = service
        self.url = url
        self.status_code = status_code
        self.attempts = attempts


class PermanentFetchError(FetchError):
    """Client error (4xx other than 429); retrying would not help."""

    retryable = False


class RetryExhaustedError(FetchError):
    """Transient failure that survived every retry attempt."""

    retryable = True


class InvalidCandidateError(PipelineError):
    """A raw listing lacks a field required for admission."""

    def __init__(self, source: str, missing: list[str]) -> None:
        super().__init__(f"Candidate from {source} missing: {', '.join(missing)}")
        self.source = source
        self.missing = missing


class CollectionCorruptError(PipelineError):
    """A persisted collection could not be parsed or validated."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Corrupt collection {path}: {reason}")
        self.path = path
        self.reason = reason


__all__ = [
    "CollectionCorruptError",
    "ConfigurationError",
    "FetchError",
    "InvalidCandidateError",
    "PermanentFetchError",
    "PipelineError",
    "RetryExhaustedError",
]
