from __future__ import annotations

from listing_pipeline.config import RateLimitConfig
from listing_pipeline.engine.rate_limit import RateLimiter


def test_requests_within_budget_do_not_wait(fake_clock) -> None:
    limiter = RateLimiter(
        RateLimitConfig.model_validate({"default": {"requests_per_window": 3}}), clock=fake_clock
    )
    waits = [limiter.acquire("svc") for _ in range(3)]
    assert waits == [0.0, 0.0, 0.0]
    assert fake_clock.sleeps == []


def test_exhausted_budget_sleeps_until_window_resets(fake_clock) -> None:
    limiter = RateLimiter(
        RateLimitConfig.model_validate({"default": {"requests_per_window": 2, "window_seconds": 1.0}}),
        clock=fake_clock,
    )
    limiter.acquire("svc")
    fake_clock.advance(0.25)
    limiter.acquire("svc")
    waited = limiter.acquire("svc")
    assert waited == 0.75
    assert fake_clock.sleeps == [0.75]
    assert limiter.stats()["svc"]["request_count"] == 1


def test_services_have_independent_windows(fake_clock) -> None:
    config = RateLimitConfig.model_validate({"services": {"slow": 1, "fast": 5}})
    limiter = RateLimiter(config, clock=fake_clock)
    limiter.acquire("slow")
    for _ in range(5):
        assert limiter.acquire("fast") == 0.0
    assert limiter.acquire("slow") == 1.0
    assert config.for_service("fast").requests_per_window == 5
    assert config.for_service("unknown").requests_per_window == 1


def test_window_expiry_resets_count(fake_clock) -> None:
    limiter = RateLimiter(RateLimitConfig(), clock=fake_clock)
    limiter.acquire("svc")
    fake_clock.advance(1.5)
    assert limiter.acquire("svc") == 0.0
    limiter.reset()
    assert limiter.stats() == {}
