"""
In-memory repositories for local development and tests.

These mirror the Snowflake repositories' behaviour, including their
atomicity: every read-modify-write happens under a lock, so the upload
state swap and usage upserts stay correct when called concurrently from
the event loop and from worker threads.

Not suitable for production (nothing survives a restart), but perfect
for unit tests and running the API without a database.
"""

import logging
import threading
from dataclasses import replace
from datetime import date, datetime
from typing import Optional

from ..core.errors import ProjectNotFound
from ..core.limits.models import UsageDailyCounter, UsageDelta
from ..core.uploads.models import FileObject, ProjectRecord, UploadSession, UploadStatus

logger = logging.getLogger(__name__)

_ACTIVE = (UploadStatus.INIT, UploadStatus.AWAITING_PUT)


class InMemoryProjectDirectory:
    """Project lookup backed by a dict."""

    def __init__(self, projects: Optional[list[ProjectRecord]] = None) -> None:
        self._projects: dict[str, ProjectRecord] = {}
        for project in projects or []:
            self.add(project)

    def add(self, project: ProjectRecord) -> None:
        self._projects[project.project_id] = project

    def get_project(self, project_id: str) -> ProjectRecord:
        try:
            return self._projects[project_id]
        except KeyError:
            raise ProjectNotFound(f"Project {project_id} not found")


class InMemoryUploadRepository:
    """Upload sessions keyed by upload_id."""

    def __init__(self) -> None:
        self._sessions: dict[str, UploadSession] = {}
        self._lock = threading.Lock()

    def create(self, session: UploadSession) -> None:
        with self._lock:
            if session.upload_id in self._sessions:
                raise ValueError(f"Upload {session.upload_id} already exists")
            self._sessions[session.upload_id] = replace(session)

    def get(self, upload_id: str) -> Optional[UploadSession]:
        with self._lock:
            session = self._sessions.get(upload_id)
            return replace(session) if session else None

    def transition(
        self,
        upload_id: str,
        from_statuses: tuple[UploadStatus, ...],
        to_status: UploadStatus,
    ) -> bool:
        with self._lock:
            session = self._sessions.get(upload_id)
            if session is None or session.status not in from_statuses:
                return False
            self._sessions[upload_id] = session.with_status(to_status)
            return True

    def list_for_project(self, project_id: str, limit: int = 100) -> list[UploadSession]:
        with self._lock:
            sessions = [s for s in self._sessions.values() if s.project_id == project_id]
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return [replace(s) for s in sessions[:limit]]

    def expire_before(self, now: datetime) -> int:
        with self._lock:
            stale = [
                upload_id
                for upload_id, s in self._sessions.items()
                if s.status in _ACTIVE and s.is_expired_at(now)
            ]
            for upload_id in stale:
                self._sessions[upload_id] = self._sessions[upload_id].with_status(
                    UploadStatus.EXPIRED
                )
            return len(stale)


class InMemoryFileRepository:
    """Committed files keyed by id."""

    def __init__(self) -> None:
        self._files: dict[str, FileObject] = {}
        self._lock = threading.Lock()

    def create(self, file: FileObject) -> None:
        with self._lock:
            if file.id in self._files:
                raise ValueError(f"File {file.id} already exists")
            self._files[file.id] = file

    def get(self, file_id: str) -> Optional[FileObject]:
        with self._lock:
            return self._files.get(file_id)

    def list_for_project(
        self,
        project_id: str,
        tenant_id: Optional[str] = None,
        path_prefix: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[FileObject]:
        with self._lock:
            files = [
                f for f in self._files.values()
                if f.project_id == project_id
                and (tenant_id is None or f.tenant_id == tenant_id)
                and (path_prefix is None or f.path.startswith(path_prefix))
            ]
        files.sort(key=lambda f: f.uploaded_at, reverse=True)
        return files[offset:offset + limit]

    def delete(self, file_id: str) -> bool:
        with self._lock:
            return self._files.pop(file_id, None) is not None


class InMemoryUsageRepository:
    """Daily usage rows keyed by (project_id, day)."""

    def __init__(self) -> None:
        self._rows: dict[tuple[str, date], UsageDailyCounter] = {}
        self._lock = threading.Lock()

    def increment(self, project_id: str, day: date, delta: UsageDelta) -> None:
        with self._lock:
            row = self._rows.get((project_id, day))
            if row is None:
                self._rows[(project_id, day)] = UsageDailyCounter(
                    project_id=project_id,
                    day=day,
                    uploads=delta.uploads,
                    transforms=delta.transforms,
                    bandwidth_bytes=delta.bandwidth_bytes,
                )
                return
            row.uploads += delta.uploads
            row.transforms += delta.transforms
            row.bandwidth_bytes += delta.bandwidth_bytes

    def get_range(self, project_id: str, start: date, end: date) -> list[UsageDailyCounter]:
        with self._lock:
            rows = [
                replace(row)
                for (pid, day), row in self._rows.items()
                if pid == project_id and start <= day <= end
            ]
        return sorted(rows, key=lambda r: r.day)
