"""
Rate limiting and usage accounting.
"""

from .models import (
    LimitKind,
    RateLimitDecision,
    RateLimitPolicy,
    UsageDailyCounter,
    UsageDelta,
)
from .rate_limiter import BaseRateLimiter, InMemoryRateLimiter, RateLimiter
from .usage import UsageAggregator, UsageRepository

__all__ = [
    "LimitKind",
    "RateLimitDecision",
    "RateLimitPolicy",
    "UsageDailyCounter",
    "UsageDelta",
    "BaseRateLimiter",
    "InMemoryRateLimiter",
    "RateLimiter",
    "UsageAggregator",
    "UsageRepository",
]
