"""Tests for token buckets, plan budgets and the auth endpoint middleware."""

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from onesaas.exceptions import RateLimitExceededError
from onesaas.middleware.rate_limit import PlanRateLimiter, RateLimitMiddleware, TokenBucket


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestTokenBucket:
    """Test suite for TokenBucket."""

    def test_capacity_then_refuse(self, clock):
        bucket = TokenBucket(capacity=3, refill_rate=1.0, clock=clock)

        assert [bucket.consume() for _ in range(4)] == [True, True, True, False]

    def test_refill_over_time(self, clock):
        bucket = TokenBucket(capacity=2, refill_rate=0.5, clock=clock)
        bucket.consume()
        bucket.consume()

        assert bucket.retry_after() == 2
        clock.advance(2)
        assert bucket.consume() is True
        assert bucket.consume() is False

    def test_refill_capped_at_capacity(self, clock):
        bucket = TokenBucket(capacity=2, refill_rate=10.0, clock=clock)
        clock.advance(100)

        assert [bucket.consume() for _ in range(3)] == [True, True, False]

    def test_retry_after_zero_when_available(self, clock):
        assert TokenBucket(capacity=1, refill_rate=1.0, clock=clock).retry_after() == 0


class TestPlanRateLimiter:
    """Test suite for per-account plan budgets."""

    def test_budget_per_account(self, clock):
        limiter = PlanRateLimiter(clock=clock)

        for _ in range(3):
            limiter.check("alice", "Basic Plan", 3, 3)
        with pytest.raises(RateLimitExceededError) as exc_info:
            limiter.check("alice", "Basic Plan", 3, 3)
        limiter.check("bob", "Basic Plan", 3, 3)

        assert exc_info.value.retry_after == 1
        assert exc_info.value.status_code == 429
        assert limiter.remaining("alice", "Basic Plan") == 0
        assert limiter.remaining("carol", "Basic Plan") is None

    def test_budget_recovers(self, clock):
        limiter = PlanRateLimiter(clock=clock)
        for _ in range(2):
            limiter.check("alice", "Pro Plan", 2, 10)

        clock.advance(5)
        limiter.check("alice", "Pro Plan", 2, 10)

    def test_plan_change_gets_new_budget(self, clock):
        limiter = PlanRateLimiter(clock=clock)
        limiter.check("alice", "Basic Plan", 1, 3600)

        limiter.check("alice", "Pro Plan", 5, 3600)


def _app(clock, enabled=True):
    app = FastAPI()
    app.add_middleware(
        RateLimitMiddleware,
        enabled=enabled,
        clock=clock,
        limits=(("/api/v1/auth/login", 2, 2), ("/api/v1/auth/", 5, 5)),
    )

    @app.post("/api/v1/auth/login")
    async def login():
        return {"ok": True}

    @app.get("/api/v1/auth/me")
    async def me():
        return {"ok": True}

    @app.get("/api/v1/algorithms")
    async def algorithms():
        return {"ok": True}

    return app


async def _client(app):
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


class TestRateLimitMiddleware:
    """Test suite for per-IP limits on authentication endpoints."""

    async def test_login_limited_with_retry_after(self, clock):
        async with await _client(_app(clock)) as client:
            first = await client.post("/api/v1/auth/login")
            await client.post("/api/v1/auth/login")
            blocked = await client.post("/api/v1/auth/login")

        assert first.status_code == 200
        assert first.headers["X-RateLimit-Limit"] == "2"
        assert first.headers["X-RateLimit-Remaining"] == "1"
        assert blocked.status_code == 429
        assert blocked.headers["Retry-After"] == "1"
        assert blocked.json()["code"] == "rate_limit_exceeded"
        assert blocked.json()["retryable"] is False

    async def test_limits_are_per_ip(self, clock):
        async with await _client(_app(clock)) as client:
            for _ in range(2):
                await client.post("/api/v1/auth/login", headers={"X-Forwarded-For": "10.0.0.1"})
            other = await client.post("/api/v1/auth/login", headers={"X-Forwarded-For": "10.0.0.2, 10.0.0.1"})
            same = await client.post("/api/v1/auth/login", headers={"X-Forwarded-For": "10.0.0.1"})

        assert other.status_code == 200
        assert same.status_code == 429

    async def test_prefixes_have_separate_buckets(self, clock):
        async with await _client(_app(clock)) as client:
            for _ in range(3):
                await client.post("/api/v1/auth/login")
            me = await client.get("/api/v1/auth/me")

        assert me.status_code == 200
        assert me.headers["X-RateLimit-Limit"] == "5"

    async def test_other_paths_unlimited(self, clock):
        async with await _client(_app(clock)) as client:
            responses = [await client.get("/api/v1/algorithms") for _ in range(10)]

        assert all(r.status_code == 200 for r in responses)
        assert "X-RateLimit-Limit" not in responses[0].headers

    async def test_recovers_after_window(self, clock):
        async with await _client(_app(clock)) as client:
            for _ in range(3):
                await client.post("/api/v1/auth/login")
            clock.advance(1)
            response = await client.post("/api/v1/auth/login")

        assert response.status_code == 200

    async def test_disabled(self, clock):
        async with await _client(_app(clock, enabled=False)) as client:
            responses = [await client.post("/api/v1/auth/login") for _ in range(5)]

        assert all(r.status_code == 200 for r in responses)
