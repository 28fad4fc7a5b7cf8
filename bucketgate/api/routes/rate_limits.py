"""
Rate limit endpoints.

Projects can see how much of the current window they have left.
Resetting windows is an operator action and needs an admin key.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from ...core.limits.models import LimitKind
from ..dependencies import AdminKey, AuthenticatedProject, RateLimiterDep

logger = logging.getLogger(__name__)

router = APIRouter()


class RateLimitStatusResponse(BaseModel):
    """Current window for one kind of operation."""
    kind: str
    limit: int
    remaining: int
    reset_at: datetime
    allowed: bool = Field(description="Whether the next request would be admitted")


class ResetRequest(BaseModel):
    """
    Which windows to reset.

    Omit project_id to reset every project's windows.
    """
    project_id: Optional[str] = None
    kind: Optional[LimitKind] = Field(
        None,
        description="Only reset this kind; both kinds when omitted",
    )


class ResetResponse(BaseModel):
    reset: str


def _parse_kind(kind: str) -> LimitKind:
    try:
        return LimitKind(kind)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown rate limit kind '{kind}'. Use one of: "
                   + ", ".join(k.value for k in LimitKind),
        )


@router.get(
    "/{kind}",
    response_model=RateLimitStatusResponse,
    summary="Rate limit status",
    description="Remaining requests in the current window. Does not consume a request.",
)
async def get_rate_limit_status(
    kind: str,
    ctx: AuthenticatedProject,
    limiter: RateLimiterDep,
) -> RateLimitStatusResponse:
    limit_kind = _parse_kind(kind)
    decision = limiter.peek(ctx.project_id, limit_kind)

    return RateLimitStatusResponse(
        kind=limit_kind.value,
        limit=decision.limit,
        remaining=decision.remaining,
        reset_at=decision.reset_at,
        allowed=decision.allowed,
    )


@router.post(
    "/reset",
    response_model=ResetResponse,
    summary="Reset rate limit windows",
    description="Admin only. Clears one project's windows, or all of them.",
)
async def reset_rate_limits(
    request: ResetRequest,
    admin: AdminKey,
    limiter: RateLimiterDep,
) -> ResetResponse:
    if request.project_id is None:
        if request.kind is not None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="kind can only be given together with project_id",
            )
        limiter.reset_all()
        scope = "all"
    else:
        kinds = [request.kind] if request.kind else list(LimitKind)
        for kind in kinds:
            limiter.reset(request.project_id, kind)
        scope = request.project_id

    logger.info(
        "Rate limits reset by admin",
        extra={"admin_key_prefix": admin, "scope": scope}
    )

    return ResetResponse(reset=scope)
