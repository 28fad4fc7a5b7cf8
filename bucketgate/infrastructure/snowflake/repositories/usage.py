"""
Daily usage counters in Snowflake.

increment() is a single MERGE: it creates the (project, day) row with the
deltas or adds them to the existing columns. The database applies each
MERGE atomically, so concurrent bumps never lose an increment.
"""

import logging
from datetime import date

from ....core.limits.models import UsageDailyCounter, UsageDelta
from ..client import SnowflakeConnection

logger = logging.getLogger(__name__)


class SnowflakeUsageRepository:
    """Repository for the usage_daily table."""

    def __init__(self, connection: SnowflakeConnection) -> None:
        self._conn = connection

    def increment(self, project_id: str, day: date, delta: UsageDelta) -> None:
        cursor = self._conn.cursor()

        try:
            cursor.execute("""
                MERGE INTO usage_daily AS target
                USING (
                    SELECT %s AS project_id, %s::DATE AS day,
                           %s AS uploads, %s AS transforms, %s AS bandwidth_bytes
                ) AS source
                ON target.project_id = source.project_id AND target.day = source.day
                WHEN MATCHED THEN UPDATE SET
                    uploads = target.uploads + source.uploads,
                    transforms = target.transforms + source.transforms,
                    bandwidth_bytes = target.bandwidth_bytes + source.bandwidth_bytes,
                    updated_at = CURRENT_TIMESTAMP()
                WHEN NOT MATCHED THEN INSERT (
                    project_id, day, uploads, transforms, bandwidth_bytes
                ) VALUES (
                    source.project_id, source.day,
                    source.uploads, source.transforms, source.bandwidth_bytes
                )
            """, (
                project_id,
                day.isoformat(),
                delta.uploads,
                delta.transforms,
                delta.bandwidth_bytes,
            ))
            self._conn.commit()
        except Exception as e:
            logger.error(
                "Failed to increment usage",
                extra={"project_id": project_id, "day": day.isoformat(), "error": str(e)},
            )
            raise
        finally:
            cursor.close()

    def get_range(self, project_id: str, start: date, end: date) -> list[UsageDailyCounter]:
        cursor = self._conn.cursor()

        try:
            cursor.execute("""
                SELECT project_id, day, uploads, transforms, bandwidth_bytes
                FROM usage_daily
                WHERE project_id = %s
                  AND day BETWEEN %s AND %s
                ORDER BY day
            """, (project_id, start.isoformat(), end.isoformat()))
            rows = cursor.fetchall()
        finally:
            cursor.close()

        return [
            UsageDailyCounter(
                project_id=pid,
                day=day,
                uploads=int(uploads or 0),
                transforms=int(transforms or 0),
                bandwidth_bytes=int(bandwidth or 0),
            )
            for pid, day, uploads, transforms, bandwidth in rows
        ]
