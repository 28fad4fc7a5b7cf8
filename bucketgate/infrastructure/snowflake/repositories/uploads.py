"""
Snowflake repositories for upload sessions and committed files.

The confirm path depends on transition() being a compare-and-swap: it is
one conditional UPDATE, and Snowflake's rowcount tells us whether this
caller is the one that moved the row.
"""

import json
import logging
from datetime import datetime
from typing import Optional

from ....core.uploads.models import FileObject, UploadSession, UploadStatus
from ..client import SnowflakeConnection

logger = logging.getLogger(__name__)

_ACTIVE = (UploadStatus.INIT, UploadStatus.AWAITING_PUT)

_SESSION_COLUMNS = """
    upload_id, project_id, tenant_id, resolved_path, content_type,
    status, metadata, api_key_id, expires_at, created_at
"""

_FILE_COLUMNS = """
    file_id, project_id, tenant_id, path, version,
    size_bytes, mime_type, metadata, uploaded_at
"""


def _parse_variant_json(variant_data) -> dict:
    """
    Parse a VARIANT column that may arrive as a JSON string or already
    parsed, depending on the driver.
    """
    if not variant_data:
        return {}

    if isinstance(variant_data, str):
        try:
            return json.loads(variant_data)
        except json.JSONDecodeError as e:
            logger.error(
                "Failed to parse VARIANT JSON string",
                extra={"variant_data": variant_data[:100], "error": str(e)},
            )
            return {}

    return variant_data


class SnowflakeUploadRepository:
    """Upload session rows, one per upload_id."""

    def __init__(self, connection: SnowflakeConnection) -> None:
        self._conn = connection

    def create(self, session: UploadSession) -> None:
        cursor = self._conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO upload_sessions (
                    upload_id, project_id, tenant_id, resolved_path, content_type,
                    status, metadata, api_key_id, expires_at, created_at
                )
                SELECT %s, %s, %s, %s, %s, %s, PARSE_JSON(%s), %s, %s, %s
            """, (
                session.upload_id,
                session.project_id,
                session.tenant_id,
                session.resolved_path,
                session.content_type,
                session.status.value,
                json.dumps(session.metadata),
                session.api_key_id,
                session.expires_at,
                session.created_at,
            ))
            self._conn.commit()
        except Exception as e:
            logger.error(
                "Failed to save upload session",
                extra={"upload_id": session.upload_id, "error": str(e)},
            )
            raise
        finally:
            cursor.close()

    def get(self, upload_id: str) -> Optional[UploadSession]:
        cursor = self._conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {_SESSION_COLUMNS}
                FROM upload_sessions
                WHERE upload_id = %s
            """, (upload_id,))
            row = cursor.fetchone()
        finally:
            cursor.close()

        return self._row_to_session(row) if row else None

    def transition(
        self,
        upload_id: str,
        from_statuses: tuple[UploadStatus, ...],
        to_status: UploadStatus,
    ) -> bool:
        placeholders = ", ".join(["%s"] * len(from_statuses))
        cursor = self._conn.cursor()

        try:
            cursor.execute(f"""
                UPDATE upload_sessions
                SET status = %s,
                    updated_at = CURRENT_TIMESTAMP()
                WHERE upload_id = %s
                  AND status IN ({placeholders})
            """, (to_status.value, upload_id, *[s.value for s in from_statuses]))
            changed = cursor.rowcount == 1
            self._conn.commit()
        finally:
            cursor.close()

        if changed:
            logger.debug(
                "Upload session transitioned",
                extra={"upload_id": upload_id, "status": to_status.value},
            )
        return changed

    def list_for_project(self, project_id: str, limit: int = 100) -> list[UploadSession]:
        cursor = self._conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {_SESSION_COLUMNS}
                FROM upload_sessions
                WHERE project_id = %s
                ORDER BY created_at DESC
                LIMIT %s
            """, (project_id, limit))
            rows = cursor.fetchall()
        finally:
            cursor.close()

        return [self._row_to_session(row) for row in rows]

    def expire_before(self, now: datetime) -> int:
        cursor = self._conn.cursor()

        try:
            cursor.execute("""
                UPDATE upload_sessions
                SET status = %s,
                    updated_at = CURRENT_TIMESTAMP()
                WHERE status IN (%s, %s)
                  AND expires_at <= %s
            """, (
                UploadStatus.EXPIRED.value,
                *[s.value for s in _ACTIVE],
                now,
            ))
            count = cursor.rowcount or 0
            self._conn.commit()
        finally:
            cursor.close()

        return count

    def _row_to_session(self, row) -> UploadSession:
        (
            upload_id, project_id, tenant_id, resolved_path, content_type,
            status, metadata, api_key_id, expires_at, created_at,
        ) = row
        return UploadSession(
            upload_id=upload_id,
            project_id=project_id,
            tenant_id=tenant_id,
            resolved_path=resolved_path,
            content_type=content_type,
            status=UploadStatus(status),
            metadata=_parse_variant_json(metadata),
            api_key_id=api_key_id or "",
            expires_at=expires_at,
            created_at=created_at,
        )


class SnowflakeFileRepository:
    """Committed file rows."""

    def __init__(self, connection: SnowflakeConnection) -> None:
        self._conn = connection

    def create(self, file: FileObject) -> None:
        cursor = self._conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO files (
                    file_id, project_id, tenant_id, path, filename, version,
                    size_bytes, mime_type, metadata, uploaded_at
                )
                SELECT %s, %s, %s, %s, %s, %s, %s, %s, PARSE_JSON(%s), %s
            """, (
                file.id,
                file.project_id,
                file.tenant_id,
                file.path,
                file.filename,
                file.version,
                file.size,
                file.mime_type,
                json.dumps(file.metadata),
                file.uploaded_at,
            ))
            self._conn.commit()
        except Exception as e:
            logger.error(
                "Failed to save file record",
                extra={"file_id": file.id, "error": str(e)},
            )
            raise
        finally:
            cursor.close()

    def get(self, file_id: str) -> Optional[FileObject]:
        cursor = self._conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {_FILE_COLUMNS}
                FROM files
                WHERE file_id = %s
            """, (file_id,))
            row = cursor.fetchone()
        finally:
            cursor.close()

        return self._row_to_file(row) if row else None

    def list_for_project(
        self,
        project_id: str,
        tenant_id: Optional[str] = None,
        path_prefix: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[FileObject]:
        conditions = ["project_id = %s"]
        params: list = [project_id]
        if tenant_id is not None:
            conditions.append("tenant_id = %s")
            params.append(tenant_id)
        if path_prefix:
            conditions.append("STARTSWITH(path, %s)")
            params.append(path_prefix)

        cursor = self._conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {_FILE_COLUMNS}
                FROM files
                WHERE {" AND ".join(conditions)}
                ORDER BY uploaded_at DESC
                LIMIT %s OFFSET %s
            """, (*params, limit, offset))
            rows = cursor.fetchall()
        finally:
            cursor.close()

        return [self._row_to_file(row) for row in rows]

    def delete(self, file_id: str) -> bool:
        cursor = self._conn.cursor()

        try:
            cursor.execute("DELETE FROM files WHERE file_id = %s", (file_id,))
            deleted = cursor.rowcount == 1
            self._conn.commit()
        finally:
            cursor.close()

        return deleted

    def _row_to_file(self, row) -> FileObject:
        fid, project_id, tenant_id, path, version, size, mime_type, metadata, uploaded_at = row
        return FileObject(
            id=fid,
            project_id=project_id,
            tenant_id=tenant_id,
            path=path,
            version=version,
            size=int(size),
            mime_type=mime_type,
            metadata=_parse_variant_json(metadata),
            uploaded_at=uploaded_at,
        )
