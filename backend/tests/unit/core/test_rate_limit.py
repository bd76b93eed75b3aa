"""Unit tests for the shared Amber rate-limit state."""
from price_cache.core.rate_limit import RateLimitState


class ManualClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRateLimitState:
    """Tests for RateLimitState."""

    def test_initially_not_limited(self) -> None:
        state = RateLimitState(clock=ManualClock())
        assert state.is_limited() is False
        assert state.retry_after == 0
        assert state.last_error is None

    def test_record_limited_blocks_for_delay(self) -> None:
        """After record_limited(60), calls are blocked for the next ~60s."""
        clock = ManualClock()
        state = RateLimitState(clock=clock)

        retry_after = state.record_limited(60)

        assert retry_after == clock.now + 60
        assert state.is_limited() is True
        clock.now += 59
        assert state.is_limited() is True
        clock.now += 1
        assert state.is_limited() is False

    def test_record_limited_sets_last_error(self) -> None:
        state = RateLimitState(clock=ManualClock())
        state.record_limited(30)
        assert state.last_error == "Rate limited: retry after 30s"

    def test_record_success_clears_limit_immediately(self) -> None:
        state = RateLimitState(clock=ManualClock())
        state.record_limited(60)

        state.record_success()

        assert state.is_limited() is False
        assert state.retry_after == 0

    def test_stale_success_does_not_clear_newer_limit(self) -> None:
        """A response to a request issued before the 429 must not clear it."""
        clock = ManualClock()
        state = RateLimitState(clock=clock)
        started_at = state.now()

        clock.now += 1
        state.record_limited(60)
        state.record_success(request_started_at=started_at)

        assert state.is_limited() is True

    def test_success_started_after_limit_clears_it(self) -> None:
        clock = ManualClock()
        state = RateLimitState(clock=clock)
        state.record_limited(60)

        clock.now += 5
        state.record_success(request_started_at=state.now())

        assert state.is_limited() is False

    def test_instances_are_isolated(self) -> None:
        clock = ManualClock()
        first = RateLimitState(clock=clock)
        second = RateLimitState(clock=clock)

        first.record_limited(60)

        assert first.is_limited() is True
        assert second.is_limited() is False
