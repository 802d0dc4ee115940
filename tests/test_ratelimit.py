"""Tests for the rate limiter and page action pacer."""

import pytest

from flowpilot.ratelimit import (
    DAILY_PRODUCTION_CLASS,
    DISPATCH_CLASS,
    ActionPacer,
    RateLimiter,
    RateLimiterState,
    RateLimitRule,
    distribution_class,
)


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


class TestMinInterval:
    """Tests for min_interval spacing."""

    def test_first_action_is_allowed(self, clock):
        limiter = RateLimiter({DISPATCH_CLASS: RateLimitRule(min_interval=5)}, clock=clock)

        assert limiter.wait_time(DISPATCH_CLASS) == 0
        assert limiter.is_allowed(DISPATCH_CLASS)

    def test_wait_counts_down_from_last_action(self, clock):
        limiter = RateLimiter({DISPATCH_CLASS: RateLimitRule(min_interval=5)}, clock=clock)
        limiter.record(DISPATCH_CLASS)

        clock.advance(2)
        assert limiter.wait_time(DISPATCH_CLASS) == pytest.approx(3)

        clock.advance(3)
        assert limiter.is_allowed(DISPATCH_CLASS)

    def test_unconfigured_class_is_never_gated(self, clock):
        limiter = RateLimiter(clock=clock)
        for _ in range(100):
            limiter.record("anything")

        assert limiter.wait_time("anything") == 0


class TestRollingWindow:
    """Tests for max_actions within a rolling window."""

    def test_quota_blocks_until_oldest_expires(self, clock):
        rule = RateLimitRule(max_actions=3, window=3600)
        limiter = RateLimiter({DAILY_PRODUCTION_CLASS: rule}, clock=clock)

        for _ in range(3):
            limiter.record(DAILY_PRODUCTION_CLASS)
            clock.advance(100)

        assert not limiter.is_allowed(DAILY_PRODUCTION_CLASS)
        assert limiter.wait_time(DAILY_PRODUCTION_CLASS) == pytest.approx(3300)

        clock.advance(3300)
        assert limiter.is_allowed(DAILY_PRODUCTION_CLASS)

    def test_interval_and_quota_combine(self, clock):
        rule = RateLimitRule(min_interval=60, max_actions=2, window=600)
        limiter = RateLimiter({"dispatch": rule}, clock=clock)

        limiter.record("dispatch")
        clock.advance(60)
        limiter.record("dispatch")
        clock.advance(60)

        # Interval satisfied, quota not
        assert limiter.wait_time("dispatch") == pytest.approx(480)


class TestRuleLookup:
    """Tests for exact and wildcard rule lookup."""

    def test_wildcard_covers_every_target(self, clock):
        limiter = RateLimiter(
            {"distribute:*": RateLimitRule(max_actions=1, window=3600)}, clock=clock
        )
        limiter.record(distribution_class("tiktok"))

        assert not limiter.is_allowed("distribute:tiktok")
        assert limiter.is_allowed("distribute:shopee")

    def test_exact_rule_wins_over_wildcard(self):
        exact = RateLimitRule(min_interval=1)
        limiter = RateLimiter({"distribute:*": RateLimitRule(min_interval=99), "distribute:lazada": exact})

        assert limiter.rule_for("distribute:lazada") is exact
        assert limiter.rule_for("distribute:tiktok").min_interval == 99


class TestTryAcquire:
    """Tests for try_acquire and shared state."""

    def test_gated_acquire_does_not_record(self, clock):
        limiter = RateLimiter({DISPATCH_CLASS: RateLimitRule(min_interval=10)}, clock=clock)

        assert limiter.try_acquire(DISPATCH_CLASS) is True
        clock.advance(5)
        assert limiter.try_acquire(DISPATCH_CLASS) is False
        clock.advance(5)
        assert limiter.try_acquire(DISPATCH_CLASS) is True

    def test_state_can_be_shared(self, clock):
        state = RateLimiterState()
        rules = {DISPATCH_CLASS: RateLimitRule(min_interval=10)}
        RateLimiter(rules, state=state, clock=clock).record(DISPATCH_CLASS)

        assert not RateLimiter(rules, state=state, clock=clock).is_allowed(DISPATCH_CLASS)
        assert state.last(DISPATCH_CLASS) == 1000.0

    def test_snapshot_reports_configured_classes(self, clock):
        limiter = RateLimiter({DISPATCH_CLASS: RateLimitRule(min_interval=10)}, clock=clock)
        limiter.record(DISPATCH_CLASS)
        clock.advance(4)

        assert limiter.snapshot() == {DISPATCH_CLASS: 6.0}


class TestRefund:
    """Tests for returning a recorded action that never happened."""

    def test_refund_restores_previous_spacing(self, clock):
        limiter = RateLimiter({DISPATCH_CLASS: RateLimitRule(min_interval=10)}, clock=clock)
        limiter.record(DISPATCH_CLASS)
        clock.advance(12)
        instant = limiter.record(DISPATCH_CLASS)

        limiter.refund(DISPATCH_CLASS, instant)

        assert limiter.is_allowed(DISPATCH_CLASS)

    def test_refund_within_interval_keeps_earlier_action(self, clock):
        limiter = RateLimiter({DISPATCH_CLASS: RateLimitRule(min_interval=10)}, clock=clock)
        limiter.record(DISPATCH_CLASS)
        clock.advance(4)
        instant = limiter.record(DISPATCH_CLASS)

        limiter.refund(DISPATCH_CLASS, instant)

        assert limiter.wait_time(DISPATCH_CLASS) == pytest.approx(6)

    def test_refund_frees_window_quota(self, clock):
        limiter = RateLimiter({DAILY_PRODUCTION_CLASS: RateLimitRule(max_actions=1, window=3600)}, clock=clock)
        instant = limiter.record(DAILY_PRODUCTION_CLASS)
        assert not limiter.is_allowed(DAILY_PRODUCTION_CLASS)

        limiter.refund(DAILY_PRODUCTION_CLASS, instant)

        assert limiter.is_allowed(DAILY_PRODUCTION_CLASS)

    def test_unknown_refund_is_ignored(self, clock):
        limiter = RateLimiter({DISPATCH_CLASS: RateLimitRule(min_interval=10)}, clock=clock)
        limiter.record(DISPATCH_CLASS)

        limiter.refund(DISPATCH_CLASS, 1.0)

        assert limiter.wait_time(DISPATCH_CLASS) == pytest.approx(10)


class TestActionPacer:
    """Tests for ActionPacer."""

    @pytest.mark.asyncio
    async def test_spaces_consecutive_actions(self, clock):
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)
            clock.advance(seconds)

        pacer = ActionPacer(min_delay=0.7, clock=clock, sleep=fake_sleep)

        await pacer.wait()
        clock.advance(0.2)
        await pacer.wait()
        clock.advance(1.0)
        await pacer.wait()

        assert sleeps == [pytest.approx(0.5)]

    @pytest.mark.asyncio
    async def test_reset_allows_immediate_action(self, clock):
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        pacer = ActionPacer(min_delay=5, clock=clock, sleep=fake_sleep)
        await pacer.wait()
        pacer.reset()
        await pacer.wait()

        assert sleeps == []
