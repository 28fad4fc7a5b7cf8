"""
Rate limit windows stored in Snowflake.

Lets several API processes share one view of each project's window.
Each (project, kind) pair has a single row holding the current window
start and how many requests it has admitted.

Admission is two statements:
1. MERGE makes sure the row exists and belongs to the current window,
   restarting the count when the window has rolled over.
2. A conditional UPDATE increments the count only while it is below the
   limit. The rowcount is the decision: 1 means admitted, 0 means the
   window is full. Two racing requests can't both take the last slot.
"""

import logging
from datetime import datetime
from typing import Optional

from ....core.limits.models import LimitKind, RateLimitPolicy
from ....core.limits.rate_limiter import BaseRateLimiter, Clock
from ..client import SnowflakeConnection

logger = logging.getLogger(__name__)


class SnowflakeRateLimiter(BaseRateLimiter):
    """
    Shared fixed-window limiter.

    fail_open decides what happens when Snowflake itself errors: False
    (the default) propagates the error so nothing proceeds unchecked;
    True admits the request and logs the failure.
    """

    def __init__(
        self,
        connection: SnowflakeConnection,
        policy: RateLimitPolicy,
        clock: Optional[Clock] = None,
        fail_open: bool = False,
    ) -> None:
        super().__init__(policy, clock)
        self._conn = connection
        self._fail_open = fail_open

    def _consume(
        self,
        project_id: str,
        kind: LimitKind,
        window_start: datetime,
        limit: int,
    ) -> tuple[bool, int]:
        cursor = self._conn.cursor()

        try:
            cursor.execute("""
                MERGE INTO rate_limit_windows AS target
                USING (SELECT %s AS project_id, %s AS kind, %s::TIMESTAMP_TZ AS window_start) AS source
                ON target.project_id = source.project_id AND target.kind = source.kind
                WHEN MATCHED AND target.window_start < source.window_start THEN UPDATE SET
                    window_start = source.window_start,
                    request_count = 0,
                    updated_at = CURRENT_TIMESTAMP()
                WHEN NOT MATCHED THEN INSERT (
                    project_id, kind, window_start, request_count
                ) VALUES (
                    source.project_id, source.kind, source.window_start, 0
                )
            """, (project_id, kind.value, window_start))

            cursor.execute("""
                UPDATE rate_limit_windows
                SET request_count = request_count + 1,
                    updated_at = CURRENT_TIMESTAMP()
                WHERE project_id = %s
                  AND kind = %s
                  AND window_start = %s::TIMESTAMP_TZ
                  AND request_count < %s
            """, (project_id, kind.value, window_start, limit))
            allowed = cursor.rowcount == 1

            cursor.execute("""
                SELECT request_count
                FROM rate_limit_windows
                WHERE project_id = %s AND kind = %s
            """, (project_id, kind.value))
            row = cursor.fetchone()

            self._conn.commit()
            return allowed, int(row[0]) if row else 0

        except Exception as e:
            logger.error(
                "Failed to check/increment rate limit",
                extra={"project_id": project_id, "kind": kind.value, "error": str(e)},
            )
            if self._fail_open:
                return True, 0
            raise

        finally:
            cursor.close()

    def _current_count(self, project_id: str, kind: LimitKind, window_start: datetime) -> int:
        cursor = self._conn.cursor()

        try:
            cursor.execute("""
                SELECT request_count
                FROM rate_limit_windows
                WHERE project_id = %s
                  AND kind = %s
                  AND window_start = %s::TIMESTAMP_TZ
            """, (project_id, kind.value, window_start))
            row = cursor.fetchone()
            return int(row[0]) if row else 0
        finally:
            cursor.close()

    def reset(self, project_id: str, kind: LimitKind) -> None:
        cursor = self._conn.cursor()

        try:
            cursor.execute("""
                DELETE FROM rate_limit_windows
                WHERE project_id = %s AND kind = %s
            """, (project_id, kind.value))
            self._conn.commit()
        finally:
            cursor.close()

        logger.info(
            "Rate limit reset",
            extra={"project_id": project_id, "kind": kind.value},
        )

    def reset_all(self) -> None:
        cursor = self._conn.cursor()

        try:
            cursor.execute("DELETE FROM rate_limit_windows")
            self._conn.commit()
        finally:
            cursor.close()

        logger.info("All rate limits reset")
