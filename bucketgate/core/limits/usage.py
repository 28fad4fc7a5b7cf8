"""
Daily usage accounting per project.

Each (project, UTC day) pair has one counter row. A bump creates the row
with its deltas if none exists yet, otherwise it adds the deltas to the
existing fields. Repositories do that as a single atomic upsert, so
concurrent bumps add up to the sum of their deltas in any order.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from .models import UsageDailyCounter, UsageDelta

logger = logging.getLogger(__name__)


class UsageRepository(Protocol):
    """Storage for daily usage rows."""

    def increment(self, project_id: str, day: date, delta: UsageDelta) -> None:
        """Upsert the row and add delta atomically."""
        ...

    def get_range(self, project_id: str, start: date, end: date) -> list[UsageDailyCounter]:
        """Rows with start <= day <= end, ordered by day."""
        ...


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class UsageAggregator:
    """
    Records and reports per-project usage.

    Reads are for dashboards and reconciliation; nothing in the upload path
    depends on them.
    """

    def __init__(
        self,
        repository: UsageRepository,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self._repo = repository
        self._today = today or _utc_today

    def bump(
        self,
        project_id: str,
        uploads: int = 0,
        transforms: int = 0,
        bandwidth_bytes: int = 0,
    ) -> None:
        delta = UsageDelta(
            uploads=uploads,
            transforms=transforms,
            bandwidth_bytes=bandwidth_bytes,
        )
        if delta.is_empty:
            return

        day = self._today()
        self._repo.increment(project_id, day, delta)

        logger.debug(
            "Usage bumped",
            extra={
                "project_id": project_id,
                "day": day.isoformat(),
                "uploads": uploads,
                "transforms": transforms,
                "bandwidth_bytes": bandwidth_bytes,
            },
        )

    def today(self, project_id: str) -> UsageDailyCounter:
        day = self._today()
        rows = self._repo.get_range(project_id, day, day)
        return rows[0] if rows else UsageDailyCounter(project_id=project_id, day=day)

    def usage_between(self, project_id: str, start: date, end: date) -> list[UsageDailyCounter]:
        if end < start:
            raise ValueError("end must not be before start")
        return self._repo.get_range(project_id, start, end)

    def daily_usage(self, project_id: str, days: int = 30) -> list[UsageDailyCounter]:
        """
        The last `days` days up to and including today, one entry per day.

        Days without any activity are filled in with zero counters.
        """
        if days < 1:
            raise ValueError("days must be at least 1")

        end = self._today()
        start = end - timedelta(days=days - 1)
        by_day = {row.day: row for row in self._repo.get_range(project_id, start, end)}

        return [
            by_day.get(start + timedelta(days=offset))
            or UsageDailyCounter(project_id=project_id, day=start + timedelta(days=offset))
            for offset in range(days)
        ]
