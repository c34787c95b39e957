"""
Tests for the fixed-window rate limiter.
"""
from rpc_cache.rate_limiter import RateLimiter


class TestRateLimiter:

    def test_window_quota(self, clock):
        limiter = RateLimiter(max_requests=35, window_seconds=60, clock=clock)
        results = [limiter.is_limited("1.2.3.4") for _ in range(35)]
        assert not any(results)
        assert limiter.is_limited("1.2.3.4")

    def test_window_resets_after_expiry(self, clock):
        limiter = RateLimiter(max_requests=35, window_seconds=60, clock=clock)
        for _ in range(36):
            limiter.is_limited("client")
        clock.advance(60)
        assert limiter.is_limited("client")  # still inside the window
        clock.advance(0.5)
        assert not limiter.is_limited("client")
        assert limiter.remaining("client") == 34

    def test_clients_are_independent(self, clock):
        limiter = RateLimiter(max_requests=1, window_seconds=60, clock=clock)
        assert not limiter.is_limited("a")
        assert limiter.is_limited("a")
        assert not limiter.is_limited("b")

    def test_retry_after(self, clock):
        limiter = RateLimiter(max_requests=1, window_seconds=60, clock=clock)
        assert limiter.retry_after("a") == 0
        limiter.is_limited("a")
        clock.advance(15.2)
        assert limiter.retry_after("a") == 45
        clock.advance(45)
        assert limiter.retry_after("a") == 1

    def test_reset_and_cleanup(self, clock):
        limiter = RateLimiter(max_requests=1, window_seconds=60, clock=clock)
        limiter.is_limited("a")
        limiter.is_limited("b")
        limiter.reset("a")
        assert not limiter.is_limited("a")

        clock.advance(61)
        assert limiter.cleanup() == 2
        assert limiter.remaining("a") == 1

    def test_restart_resets_quota(self, clock):
        limiter = RateLimiter(max_requests=1, window_seconds=60, clock=clock)
        limiter.is_limited("a")
        assert limiter.is_limited("a")
        restarted = RateLimiter(max_requests=1, window_seconds=60, clock=clock)
        assert not restarted.is_limited("a")
