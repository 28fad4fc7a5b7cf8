"""
Repository pattern implementations for Snowflake.

Repositories translate between domain models and database representations.
"""

from .projects import SnowflakeProjectDirectory
from .rate_limits import SnowflakeRateLimiter
from .uploads import SnowflakeFileRepository, SnowflakeUploadRepository
from .usage import SnowflakeUsageRepository

__all__ = [
    "SnowflakeProjectDirectory",
    "SnowflakeRateLimiter",
    "SnowflakeFileRepository",
    "SnowflakeUploadRepository",
    "SnowflakeUsageRepository",
]
