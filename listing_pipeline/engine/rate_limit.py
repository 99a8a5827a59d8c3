"""Per-service windowed request budget."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Protocol

import structlog

from ..config import RateLimitConfig


class Clock(Protocol):
    """Time source injected into the limiter and fetcher."""

    def monotonic(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


@dataclass
class WindowState:
    window_start: float
    request_count: int = 0


@dataclass
class RateLimiter:
    """Allow at most N requests per rolling window for each service tag.

    State lives only as long as the limiter; a restart resets every window.
    """

    config: RateLimitConfig
    clock: Clock = field(default_factory=SystemClock)
    logger: structlog.stdlib.BoundLogger | None = None
    _windows: dict[str, WindowState] = field(default_factory=dict, init=False)
    _lock: Lock = field(default_factory=Lock, init=False)

    def acquire(self, service: str) -> float:
        """Consume one slot, sleeping until the window resets if needed.

        Returns the number of seconds spent waiting.
        """

        budget = self.config.for_service(service)
        waited = 0.0
        with self._lock:
            now = self.clock.monotonic()
            state = self._windows.get(service)
            if state is None:
                state = WindowState(window_start=now)
                self._windows[service] = state
            if now - state.window_start >= budget.window_seconds:
                state.window_start = now
                state.request_count = 0
            if state.request_count >= budget.requests_per_window:
                waited = budget.window_seconds - (now - state.window_start)
                if waited > 0:
                    if self.logger is not None:
                        self.logger.debug(
                            "rate_limit_wait",
                            service=service,
                            wait_seconds=round(waited, 3),
                            request_count=state.request_count,
                            max_requests=budget.requests_per_window,
                        )
                    self.clock.sleep(waited)
                state.window_start = self.clock.monotonic()
                state.request_count = 0
            state.request_count += 1
        return max(waited, 0.0)

    def stats(self) -> dict[str, dict[str, float]]:
        now = self.clock.monotonic()
        with self._lock:
            return {
                service: {
                    "request_count": state.request_count,
                    "window_start": state.window_start,
                    "time_since_window": now - state.window_start,
                }
                for service, state in self._windows.items()
            }

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


__all__ = ["Clock", "RateLimiter", "SystemClock", "WindowState"]
