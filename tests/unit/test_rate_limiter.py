"""
Unit tests for the fixed-window rate limiter.

A mutable clock drives window rollover so no test ever sleeps.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone

import pytest

from bucketgate.core.errors import RateLimitExceeded
from bucketgate.core.limits import InMemoryRateLimiter, LimitKind, RateLimitPolicy
from bucketgate.core.limits.rate_limiter import window_bounds


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


START = datetime(2024, 5, 1, 12, 0, 5, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return FakeClock(START)


def make_limiter(clock, uploads=3, transforms=5, window=60, bypass=False):
    policy = RateLimitPolicy(
        limits={LimitKind.UPLOADS: uploads, LimitKind.TRANSFORMS: transforms},
        window_seconds=window,
        bypass=bypass,
    )
    return InMemoryRateLimiter(policy, clock=clock)


# ---------------------------------------------------------------------------
# Windows
# ---------------------------------------------------------------------------

class TestWindowBounds:

    def test_windows_align_to_the_epoch(self):
        start, end = window_bounds(START, 60)
        assert start == datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert end == datetime(2024, 5, 1, 12, 1, 0, tzinfo=timezone.utc)

    def test_policy_rejects_bad_values(self):
        with pytest.raises(ValueError):
            RateLimitPolicy(window_seconds=0)
        with pytest.raises(ValueError):
            RateLimitPolicy(limits={LimitKind.UPLOADS: -1})


# ---------------------------------------------------------------------------
# Admission
# ---------------------------------------------------------------------------

class TestAdmission:

    def test_allows_exactly_the_limit(self, clock):
        limiter = make_limiter(clock, uploads=3)

        results = [limiter.allow("p1", LimitKind.UPLOADS) for _ in range(5)]

        assert results == [True, True, True, False, False]

    def test_decision_reports_remaining(self, clock):
        limiter = make_limiter(clock, uploads=3)

        first = limiter.check("p1", LimitKind.UPLOADS)

        assert first.allowed
        assert first.limit == 3
        assert first.remaining == 2
        assert first.reset_at == datetime(2024, 5, 1, 12, 1, 0, tzinfo=timezone.utc)

    def test_denial_carries_retry_after(self, clock):
        limiter = make_limiter(clock, uploads=1)
        limiter.check("p1", LimitKind.UPLOADS)

        denied = limiter.check("p1", LimitKind.UPLOADS)

        assert not denied.allowed
        assert denied.remaining == 0
        assert denied.retry_after_seconds == 55

    def test_enforce_raises_when_denied(self, clock):
        limiter = make_limiter(clock, uploads=1)
        limiter.enforce("p1", LimitKind.UPLOADS)

        with pytest.raises(RateLimitExceeded) as exc_info:
            limiter.enforce("p1", LimitKind.UPLOADS)

        assert exc_info.value.retry_after_seconds == 55
        assert exc_info.value.status_code == 429

    def test_projects_and_kinds_are_independent(self, clock):
        limiter = make_limiter(clock, uploads=1, transforms=1)

        assert limiter.allow("p1", LimitKind.UPLOADS)
        assert limiter.allow("p2", LimitKind.UPLOADS)
        assert limiter.allow("p1", LimitKind.TRANSFORMS)
        assert not limiter.allow("p1", LimitKind.UPLOADS)

    def test_zero_limit_denies_everything(self, clock):
        limiter = make_limiter(clock, uploads=0)
        assert not limiter.allow("p1", LimitKind.UPLOADS)

    def test_peek_does_not_consume(self, clock):
        limiter = make_limiter(clock, uploads=2)
        limiter.allow("p1", LimitKind.UPLOADS)

        for _ in range(3):
            status = limiter.peek("p1", LimitKind.UPLOADS)
            assert status.remaining == 1

        assert limiter.allow("p1", LimitKind.UPLOADS)


class TestRolloverAndReset:

    def test_new_window_starts_from_zero(self, clock):
        limiter = make_limiter(clock, uploads=2)
        limiter.allow("p1", LimitKind.UPLOADS)
        limiter.allow("p1", LimitKind.UPLOADS)
        assert not limiter.allow("p1", LimitKind.UPLOADS)

        clock.advance(55)  # 12:01:00, next window

        assert limiter.allow("p1", LimitKind.UPLOADS)
        assert limiter.peek("p1", LimitKind.UPLOADS).remaining == 1

    def test_last_second_of_window_still_counts(self, clock):
        limiter = make_limiter(clock, uploads=1)
        limiter.allow("p1", LimitKind.UPLOADS)

        clock.advance(54)  # 12:00:59

        assert not limiter.allow("p1", LimitKind.UPLOADS)

    def test_reset_clears_one_project_and_kind(self, clock):
        limiter = make_limiter(clock, uploads=1, transforms=1)
        limiter.allow("p1", LimitKind.UPLOADS)
        limiter.allow("p1", LimitKind.TRANSFORMS)
        limiter.allow("p2", LimitKind.UPLOADS)

        limiter.reset("p1", LimitKind.UPLOADS)

        assert limiter.allow("p1", LimitKind.UPLOADS)
        assert not limiter.allow("p1", LimitKind.TRANSFORMS)
        assert not limiter.allow("p2", LimitKind.UPLOADS)

    def test_reset_all(self, clock):
        limiter = make_limiter(clock, uploads=1)
        limiter.allow("p1", LimitKind.UPLOADS)
        limiter.allow("p2", LimitKind.UPLOADS)

        limiter.reset_all()

        assert limiter.allow("p1", LimitKind.UPLOADS)
        assert limiter.allow("p2", LimitKind.UPLOADS)


class TestConcurrency:

    def test_concurrent_checks_never_exceed_limit(self, clock):
        limiter = make_limiter(clock, uploads=50)
        admitted = []
        lock = threading.Lock()

        def worker():
            for _ in range(20):
                if limiter.allow("p1", LimitKind.UPLOADS):
                    with lock:
                        admitted.append(1)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(admitted) == 50


class TestBypass:

    def test_bypass_admits_everything(self, clock):
        limiter = make_limiter(clock, uploads=1, bypass=True)
        assert all(limiter.allow("p1", LimitKind.UPLOADS) for _ in range(10))

    def test_bypass_is_logged(self, clock, caplog):
        with caplog.at_level(logging.WARNING, logger="bucketgate.core.limits.rate_limiter"):
            limiter = make_limiter(clock, bypass=True)
            limiter.allow("p1", LimitKind.UPLOADS)

        messages = [r.getMessage() for r in caplog.records]
        assert any("BYPASS is enabled" in m for m in messages)
        assert any("Rate limit bypassed" in m for m in messages)

    def test_bypass_is_off_by_default(self):
        assert RateLimitPolicy().bypass is False
