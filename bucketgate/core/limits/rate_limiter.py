"""
Per-project admission control.

Every rate-limited operation asks the limiter before doing any work.
The decision and the counter increment happen in one atomic step, so two
concurrent requests can never both take the last slot of a window.

Windows are fixed and aligned to the epoch: with a 60-second window every
window starts on a whole minute. When a window rolls over, the count
starts from zero again.

The policy is injected, never read from the environment. That includes
the bypass switch, which logs a warning whenever it lets something through
so that a bypassed deployment is visible in the logs.
"""

import logging
import math
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from ..errors import RateLimitExceeded
from .models import LimitKind, RateLimitDecision, RateLimitPolicy

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def window_bounds(now: datetime, window_seconds: int) -> tuple[datetime, datetime]:
    """Start and end of the fixed window containing now."""
    epoch_seconds = int(now.timestamp())
    start_seconds = epoch_seconds - (epoch_seconds % window_seconds)
    start = datetime.fromtimestamp(start_seconds, tz=timezone.utc)
    return start, start + timedelta(seconds=window_seconds)


def seconds_until(now: datetime, moment: datetime) -> int:
    return max(1, math.ceil((moment - now).total_seconds()))


class RateLimiter(Protocol):
    """Admission control interface shared by every limiter backend."""

    def check(self, project_id: str, kind: LimitKind) -> RateLimitDecision:
        """Decide and, if allowed, consume one slot."""
        ...

    def allow(self, project_id: str, kind: LimitKind) -> bool:
        ...

    def peek(self, project_id: str, kind: LimitKind) -> RateLimitDecision:
        """Current state without consuming a slot."""
        ...

    def enforce(self, project_id: str, kind: LimitKind) -> RateLimitDecision:
        """Like check(), but raises RateLimitExceeded when denied."""
        ...

    def reset(self, project_id: str, kind: LimitKind) -> None:
        ...

    def reset_all(self) -> None:
        ...


class BaseRateLimiter:
    """
    Shared policy handling for limiter backends.

    Subclasses implement _consume, _current_count, reset and reset_all.
    """

    def __init__(self, policy: RateLimitPolicy, clock: Optional[Clock] = None) -> None:
        self._policy = policy
        self._clock = clock or _utcnow

        if policy.bypass:
            logger.warning(
                "Rate limiting BYPASS is enabled; every request will be admitted",
                extra={"limiter": type(self).__name__},
            )

    @property
    def policy(self) -> RateLimitPolicy:
        return self._policy

    def check(self, project_id: str, kind: LimitKind) -> RateLimitDecision:
        now = self._clock()
        window_start, window_end = window_bounds(now, self._policy.window_seconds)
        limit = self._policy.limit_for(kind)

        if self._policy.bypass:
            logger.warning(
                "Rate limit bypassed",
                extra={"project_id": project_id, "kind": kind.value},
            )
            return RateLimitDecision(
                allowed=True, limit=limit, remaining=limit, reset_at=window_end
            )

        allowed, count = self._consume(project_id, kind, window_start, limit)

        if not allowed:
            logger.warning(
                "Rate limit exceeded",
                extra={
                    "project_id": project_id,
                    "kind": kind.value,
                    "current_count": count,
                    "limit_max": limit,
                },
            )
            return RateLimitDecision(
                allowed=False,
                limit=limit,
                remaining=0,
                reset_at=window_end,
                retry_after_seconds=seconds_until(now, window_end),
            )

        return RateLimitDecision(
            allowed=True,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=window_end,
        )

    def allow(self, project_id: str, kind: LimitKind) -> bool:
        return self.check(project_id, kind).allowed

    def enforce(self, project_id: str, kind: LimitKind) -> RateLimitDecision:
        decision = self.check(project_id, kind)
        if not decision.allowed:
            raise RateLimitExceeded(
                f"Rate limit for {kind.value} exceeded: "
                f"{decision.limit} per {self._policy.window_seconds}s",
                retry_after_seconds=decision.retry_after_seconds,
            )
        return decision

    def peek(self, project_id: str, kind: LimitKind) -> RateLimitDecision:
        now = self._clock()
        window_start, window_end = window_bounds(now, self._policy.window_seconds)
        limit = self._policy.limit_for(kind)
        count = 0 if self._policy.bypass else self._current_count(project_id, kind, window_start)
        return RateLimitDecision(
            allowed=self._policy.bypass or count < limit,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=window_end,
        )

    def _consume(
        self,
        project_id: str,
        kind: LimitKind,
        window_start: datetime,
        limit: int,
    ) -> tuple[bool, int]:
        """Atomically take a slot. Returns (allowed, count after the call)."""
        raise NotImplementedError

    def _current_count(self, project_id: str, kind: LimitKind, window_start: datetime) -> int:
        raise NotImplementedError

    def reset(self, project_id: str, kind: LimitKind) -> None:
        raise NotImplementedError

    def reset_all(self) -> None:
        raise NotImplementedError


class InMemoryRateLimiter(BaseRateLimiter):
    """
    Process-local fixed-window limiter.

    One lock guards the whole table; the critical section is a dict lookup
    and an integer compare, so contention is not a concern at the request
    rates a single process sees.
    """

    def __init__(
        self,
        policy: RateLimitPolicy,
        clock: Optional[Clock] = None,
        max_entries: int = 10_000,
    ) -> None:
        super().__init__(policy, clock)
        self._max_entries = max_entries
        # {(project_id, kind): (window_start, count)}
        self._windows: dict[tuple[str, LimitKind], tuple[datetime, int]] = {}
        self._lock = threading.Lock()

    def _consume(self, project_id, kind, window_start, limit):
        key = (project_id, kind)
        with self._lock:
            start, count = self._windows.get(key, (window_start, 0))
            if start != window_start:
                count = 0

            if count >= limit:
                self._windows[key] = (window_start, count)
                return False, count

            count += 1
            self._windows[key] = (window_start, count)

            if len(self._windows) > self._max_entries:
                self._evict_stale(window_start)

            return True, count

    def _current_count(self, project_id, kind, window_start):
        with self._lock:
            start, count = self._windows.get((project_id, kind), (window_start, 0))
            return count if start == window_start else 0

    def _evict_stale(self, current_window: datetime) -> None:
        stale = [key for key, (start, _) in self._windows.items() if start != current_window]
        for key in stale:
            del self._windows[key]

    def reset(self, project_id: str, kind: LimitKind) -> None:
        with self._lock:
            self._windows.pop((project_id, kind), None)
        logger.info(
            "Rate limit reset",
            extra={"project_id": project_id, "kind": kind.value},
        )

    def reset_all(self) -> None:
        with self._lock:
            self._windows.clear()
        logger.info("All rate limits reset")
