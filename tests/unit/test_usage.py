"""
Unit tests for usage accounting.
"""

import threading
from datetime import date, timedelta

import pytest

from bucketgate.core.limits import UsageAggregator, UsageDailyCounter, UsageDelta
from bucketgate.infrastructure.memory import InMemoryUsageRepository

TODAY = date(2024, 5, 10)


@pytest.fixture
def repository():
    return InMemoryUsageRepository()


@pytest.fixture
def usage(repository):
    return UsageAggregator(repository, today=lambda: TODAY)


class TestBump:

    def test_first_bump_creates_row(self, usage):
        usage.bump("p1", uploads=1, bandwidth_bytes=1024)

        row = usage.today("p1")
        assert row.uploads == 1
        assert row.transforms == 0
        assert row.bandwidth_bytes == 1024
        assert row.day == TODAY

    def test_bumps_accumulate(self, usage):
        usage.bump("p1", uploads=1, bandwidth_bytes=100)
        usage.bump("p1", uploads=2, transforms=3, bandwidth_bytes=50)

        row = usage.today("p1")
        assert (row.uploads, row.transforms, row.bandwidth_bytes) == (3, 3, 150)

    def test_negative_delta_rejected(self, usage):
        with pytest.raises(ValueError, match="cannot be negative"):
            usage.bump("p1", uploads=-1)

    def test_empty_bump_writes_nothing(self, usage, repository):
        usage.bump("p1")
        assert repository.get_range("p1", TODAY, TODAY) == []

    def test_large_bandwidth_does_not_overflow(self, usage):
        """Python ints are unbounded; totals beyond 2**63 must survive."""
        usage.bump("p1", bandwidth_bytes=2**63 - 1)
        usage.bump("p1", bandwidth_bytes=2**63 - 1)
        assert usage.today("p1").bandwidth_bytes == 2 * (2**63 - 1)

    def test_projects_are_separate(self, usage):
        usage.bump("p1", uploads=1)
        usage.bump("p2", uploads=5)
        assert usage.today("p1").uploads == 1
        assert usage.today("p2").uploads == 5

    def test_concurrent_bumps_sum_exactly(self, usage):
        def worker():
            for _ in range(100):
                usage.bump("p1", uploads=1, bandwidth_bytes=10)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        row = usage.today("p1")
        assert row.uploads == 800
        assert row.bandwidth_bytes == 8000


class TestReads:

    def test_today_without_activity_is_zero(self, usage):
        assert usage.today("p1") == UsageDailyCounter(project_id="p1", day=TODAY)

    def test_daily_usage_fills_gaps(self, usage, repository):
        repository.increment("p1", TODAY - timedelta(days=2), UsageDelta(uploads=4))
        usage.bump("p1", uploads=1)

        days = usage.daily_usage("p1", days=3)

        assert [d.day for d in days] == [
            TODAY - timedelta(days=2),
            TODAY - timedelta(days=1),
            TODAY,
        ]
        assert [d.uploads for d in days] == [4, 0, 1]

    def test_daily_usage_excludes_older_rows(self, usage, repository):
        repository.increment("p1", TODAY - timedelta(days=10), UsageDelta(uploads=9))

        days = usage.daily_usage("p1", days=7)

        assert len(days) == 7
        assert sum(d.uploads for d in days) == 0

    def test_daily_usage_requires_positive_days(self, usage):
        with pytest.raises(ValueError):
            usage.daily_usage("p1", days=0)

    def test_usage_between(self, usage, repository):
        for offset in range(5):
            repository.increment("p1", TODAY - timedelta(days=offset), UsageDelta(uploads=offset + 1))

        rows = usage.usage_between("p1", TODAY - timedelta(days=3), TODAY - timedelta(days=1))

        assert [r.uploads for r in rows] == [4, 3, 2]

    def test_usage_between_rejects_inverted_range(self, usage):
        with pytest.raises(ValueError):
            usage.usage_between("p1", TODAY, TODAY - timedelta(days=1))
