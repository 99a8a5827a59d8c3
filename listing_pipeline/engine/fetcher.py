"""HTTP fetching under per-service rate limits with retry and backoff."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict

import httpx
import structlog

from ..config import PipelineConfig
from ..errors import PermanentFetchError, RetryExhaustedError
from .rate_limit import Clock, RateLimiter, SystemClock
from .retry import Outcome, RetryContext, RetryPolicy, classify_status


@dataclass(slots=True)
class FetchRequest:
    """Input for the fetcher."""

    url: str
    method: str = "GET"
    params: dict[str, Any] | None = None
    data: dict[str, Any] | None = None
    json_body: Any = None
    headers: dict[str, str] | None = None
    timeout: float | None = None


@dataclass(slots=True)
class FetchResponse:
    """Standardised response wrapper."""

    url: str
    status_code: int
    text: str
    headers: Dict[str, str]
    attempts: int = 1
    duration_ms: float = 0.0
    raw: httpx.Response | None = field(repr=False, default=None)

    def json(self) -> Any:
        return json.loads(self.text)


class Fetcher:
    """Issue outbound requests within each service's request budget.

    4xx responses other than 429 fail immediately with
    :class:`PermanentFetchError`. 429, 5xx and transport errors are retried
    up to ``retry.max_attempts`` and then raise :class:`RetryExhaustedError`.
    """

    def __init__(
        self,
        config: PipelineConfig,
        rate_limiter: RateLimiter | None = None,
        clock: Clock | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self.clock = clock or SystemClock()
        self.logger = logger or structlog.get_logger("listing_pipeline").bind(component="fetcher")
        self.rate_limiter = rate_limiter or RateLimiter(
            config.rate_limits, clock=self.clock, logger=self.logger
        )
        self.policy = RetryPolicy(config.retry)
        self._client = httpx.Client(
            follow_redirects=True,
            timeout=config.retry.timeout,
            headers={
                "User-Agent": config.user_agent,
                "Accept": "application/json, text/html, */*",
            },
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "Fetcher":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    def get(self, service: str, url: str, **kwargs: Any) -> FetchResponse:
        return self.fetch(service, FetchRequest(url=url, method="GET", **kwargs))

    def post(self, service: str, url: str, **kwargs: Any) -> FetchResponse:
        return self.fetch(service, FetchRequest(url=url, method="POST", **kwargs))

    def fetch(self, service: str, request: FetchRequest) -> FetchResponse:
        context = self.policy.new_context(service, request.url)
        while True:
            self.rate_limiter.acquire(service)
            started = self.clock.monotonic()
            try:
                response = self._client.request(
                    request.method,
                    request.url,
                    params=request.params,
                    data=request.data,
                    json=request.json_body,
                    headers=request.headers,
                    timeout=request.timeout or self.config.retry.timeout,
                )
            except httpx.TransportError as exc:
                self._log_attempt(context, started, status=0, outcome="network_error", error=str(exc))
                self.policy.notify_failure(context, None, exc)
            else:
                outcome = classify_status(response.status_code)
                duration_ms = self._log_attempt(
                    context, started, status=response.status_code, outcome=outcome.value
                )
                if outcome is Outcome.SUCCESS:
                    return FetchResponse(
                        url=str(response.url),
                        status_code=response.status_code,
                        text=response.text,
                        headers=dict(response.headers),
                        attempts=context.attempt,
                        duration_ms=duration_ms,
                        raw=response,
                    )
                if outcome is Outcome.PERMANENT:
                    raise PermanentFetchError(
                        f"{request.method} {request.url} returned {response.status_code}",
                        service=service,
                        url=request.url,
                        status_code=response.status_code,
                        attempts=context.attempt,
                    )
                self.policy.notify_failure(context, response, None)

            if not self.policy.should_retry(context):
                break
            delay = self.policy.advance(context)
            self.logger.debug(
                "fetch_retry_scheduled",
                service=service,
                url=request.url,
                next_attempt=context.attempt,
                backoff_seconds=delay,
            )
            self.clock.sleep(delay)

        status_code = context.last_response.status_code if context.last_response else None
        self.logger.error(
            "fetch_retries_exhausted",
            service=service,
            url=request.url,
            attempts=context.attempt,
            status=status_code,
            error=str(context.last_exception) if context.last_exception else None,
        )
        raise RetryExhaustedError(
            f"Fetch failed after {context.attempt} attempts: {request.url}",
            service=service,
            url=request.url,
            status_code=status_code,
            attempts=context.attempt,
        ) from context.last_exception

    def rate_limit_stats(self) -> dict[str, dict[str, float]]:
        return self.rate_limiter.stats()

    # ------------------------------------------------------------------
    def _log_attempt(
        self,
        context: RetryContext,
        started: float,
        *,
        status: int,
        outcome: str,
        error: str | None = None,
    ) -> float:
        duration_ms = round((self.clock.monotonic() - started) * 1000, 1)
        event = dict(
            service=context.service,
            url=context.url,
            status=status,
            outcome=outcome,
            duration_ms=duration_ms,
            attempt=context.attempt,
        )
        if error:
            event["error"] = error
        if outcome == Outcome.SUCCESS.value:
            self.logger.info("fetch_attempt", **event)
        else:
            self.logger.warning("fetch_attempt", **event)
        return duration_ms


__all__ = ["FetchRequest", "FetchResponse", "Fetcher"]
