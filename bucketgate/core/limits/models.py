"""
Value types for admission control and usage accounting.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional


class LimitKind(Enum):
    """Operation kinds that are rate limited per project."""
    UPLOADS = "uploads"
    TRANSFORMS = "transforms"


@dataclass(frozen=True)
class RateLimitPolicy:
    """
    How many operations of each kind a project may start per window.

    bypass disables enforcement entirely. It exists for development and
    test environments and must be switched on explicitly.
    """
    limits: dict[LimitKind, int] = field(default_factory=lambda: {
        LimitKind.UPLOADS: 100,
        LimitKind.TRANSFORMS: 500,
    })
    window_seconds: int = 60
    bypass: bool = False

    def __post_init__(self) -> None:
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        for kind, limit in self.limits.items():
            if limit < 0:
                raise ValueError(f"limit for {kind.value} cannot be negative")

    def limit_for(self, kind: LimitKind) -> int:
        return self.limits.get(kind, 0)


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one admission check."""
    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime
    retry_after_seconds: Optional[int] = None


@dataclass(frozen=True)
class UsageDelta:
    """Increments applied to a daily usage row. All fields are non-negative."""
    uploads: int = 0
    transforms: int = 0
    bandwidth_bytes: int = 0

    def __post_init__(self) -> None:
        for name in ("uploads", "transforms", "bandwidth_bytes"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} delta cannot be negative")

    @property
    def is_empty(self) -> bool:
        return not (self.uploads or self.transforms or self.bandwidth_bytes)


@dataclass
class UsageDailyCounter:
    """One project's counters for one UTC day."""
    project_id: str
    day: date
    uploads: int = 0
    transforms: int = 0
    bandwidth_bytes: int = 0
