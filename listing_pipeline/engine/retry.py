"""Retry bookkeeping and backoff shared by the fetch loop."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import httpx

from ..config import RetryConfig


class Outcome(str, Enum):
    """Classification of a single attempt."""

    SUCCESS = "success"
    PERMANENT = "permanent"
    RETRYABLE = "retryable"


def classify_status(status_code: int) -> Outcome:
    if status_code == 429 or status_code >= 500:
        return Outcome.RETRYABLE
    if 400 <= status_code < 500:
        return Outcome.PERMANENT
    return Outcome.SUCCESS


@dataclass
class RetryContext:
    """Mutable state for one logical request across its attempts."""

    service: str
    url: str
    max_attempts: int
    attempt: int = 1
    last_response: httpx.Response | None = None
    last_exception: Exception | None = None


class RetryPolicy:
    """Decide whether and when to retry, from :class:`RetryConfig`."""

    def __init__(self, config: RetryConfig) -> None:
        self.config = config

    def new_context(self, service: str, url: str) -> RetryContext:
        return RetryContext(service=service, url=url, max_attempts=self.config.max_attempts)

    def notify_failure(
        self,
        context: RetryContext,
        response: httpx.Response | None,
        error: Exception | None,
    ) -> None:
        context.last_response = response
        context.last_exception = error

    def should_retry(self, context: RetryContext) -> bool:
        return context.attempt < context.max_attempts

    def advance(self, context: RetryContext) -> float:
        """Move to the next attempt and return the delay to wait first."""

        delay = self.delay_for(context.attempt)
        context.attempt += 1
        return delay

    def delay_for(self, attempt: int) -> float:
        """Delay before retrying after ``attempt`` (1-based) failed."""

        base = self.config.base_delay
        if self.config.backoff == "exponential":
            delay = base * (2 ** (attempt - 1))
        else:
            delay = base * attempt
        return min(delay, self.config.max_delay)


__all__ = ["Outcome", "RetryContext", "RetryPolicy", "classify_status"]
