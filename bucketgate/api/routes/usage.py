"""
Usage reporting endpoints.

Read-only views of the per-day counters the upload path increments.
Days are UTC.
"""

from datetime import date

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from ...core.limits.models import UsageDailyCounter
from ..dependencies import AuthenticatedProject, UsageAggregatorDep

router = APIRouter()


class DailyUsageResponse(BaseModel):
    """Counters for one project and day."""
    day: date
    uploads: int
    transforms: int
    bandwidth_bytes: int

    @classmethod
    def from_counter(cls, counter: UsageDailyCounter) -> "DailyUsageResponse":
        return cls(
            day=counter.day,
            uploads=counter.uploads,
            transforms=counter.transforms,
            bandwidth_bytes=counter.bandwidth_bytes,
        )


class UsageHistoryResponse(BaseModel):
    project_id: str
    days: list[DailyUsageResponse]
    total_uploads: int = Field(description="Sum of uploads over the returned days")
    total_transforms: int
    total_bandwidth_bytes: int


@router.get(
    "/daily",
    response_model=UsageHistoryResponse,
    summary="Daily usage history",
    description="One entry per day, oldest first, including days without activity",
)
async def get_daily_usage(
    ctx: AuthenticatedProject,
    usage: UsageAggregatorDep,
    days: int = Query(default=30, ge=1, le=366),
) -> UsageHistoryResponse:
    counters = usage.daily_usage(ctx.project_id, days=days)
    return UsageHistoryResponse(
        project_id=ctx.project_id,
        days=[DailyUsageResponse.from_counter(c) for c in counters],
        total_uploads=sum(c.uploads for c in counters),
        total_transforms=sum(c.transforms for c in counters),
        total_bandwidth_bytes=sum(c.bandwidth_bytes for c in counters),
    )


@router.get(
    "/today",
    response_model=DailyUsageResponse,
    summary="Usage so far today",
)
async def get_today_usage(
    ctx: AuthenticatedProject,
    usage: UsageAggregatorDep,
) -> DailyUsageResponse:
    return DailyUsageResponse.from_counter(usage.today(ctx.project_id))
