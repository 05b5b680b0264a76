"""Tests for the in-memory rate limiter."""

from datetime import datetime, timezone

from school_ledger.rate_limit import RateLimitConfig, RateLimiter, RateLimits, rate_limit_key

CONFIG = RateLimitConfig(max_attempts=3, window_seconds=60.0, block_seconds=120.0)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRateLimiter:
    """Tests for attempt counting and blocking."""

    def test_allows_up_to_max_attempts(self):
        limiter = RateLimiter(FakeClock())

        decisions = [limiter.check("k", CONFIG) for _ in range(3)]

        assert all(d.allowed for d in decisions)
        assert [d.remaining_attempts for d in decisions] == [2, 1, 0]

    def test_blocks_after_max_attempts(self):
        clock = FakeClock()
        limiter = RateLimiter(clock)
        for _ in range(3):
            limiter.check("k", CONFIG)

        decision = limiter.check("k", CONFIG)

        assert not decision.allowed
        assert decision.blocked_until == datetime.fromtimestamp(
            clock.now + 120.0, tz=timezone.utc
        )

    def test_block_holds_even_after_window(self):
        clock = FakeClock()
        limiter = RateLimiter(clock)
        for _ in range(4):
            limiter.check("k", CONFIG)

        clock.now += 90.0

        assert not limiter.check("k", CONFIG).allowed

    def test_block_expires(self):
        clock = FakeClock()
        limiter = RateLimiter(clock)
        for _ in range(4):
            limiter.check("k", CONFIG)

        clock.now += 121.0
        decision = limiter.check("k", CONFIG)

        assert decision.allowed
        assert decision.remaining_attempts == 2

    def test_window_resets_counter(self):
        clock = FakeClock()
        limiter = RateLimiter(clock)
        for _ in range(3):
            limiter.check("k", CONFIG)

        clock.now += 61.0

        assert limiter.check("k", CONFIG).remaining_attempts == 2

    def test_keys_are_independent(self):
        limiter = RateLimiter(FakeClock())
        for _ in range(4):
            limiter.check("a", CONFIG)

        assert limiter.check("b", CONFIG).allowed

    def test_clear(self):
        limiter = RateLimiter(FakeClock())
        for _ in range(4):
            limiter.check("k", CONFIG)

        limiter.clear("k")

        assert limiter.check("k", CONFIG).allowed

    def test_cleanup_removes_stale_entries(self):
        clock = FakeClock()
        limiter = RateLimiter(clock)
        limiter.check("old", CONFIG)
        clock.now += 3601.0
        limiter.check("fresh", CONFIG)

        assert limiter.cleanup() == 1
        assert limiter.cleanup() == 0

    def test_default_block_is_twice_the_window(self):
        config = RateLimitConfig(max_attempts=1, window_seconds=30.0)

        assert config.effective_block_seconds == 60.0
        assert RateLimits.PAYROLL_GENERATION.max_attempts == 3


def test_rate_limit_key():
    assert rate_limit_key("payroll:generate", "admin-1") == "payroll:generate:admin-1"
    assert rate_limit_key("payroll:generate", None) == "payroll:generate:anonymous"
