"""
Upload lifecycle orchestration.

Clients never receive bucket credentials. Instead:

1. init_upload: admission check, key resolution, credential decryption and
   a signed PUT URL. The session is stored as awaiting_put.
2. The client PUTs the bytes straight to the bucket.
3. confirm_upload: the broker checks the object really is in the bucket,
   then commits the file record and the usage increment.

upload_id is the idempotency key. The confirmed transition is a
compare-and-swap on the session row, so when duplicate confirms race
exactly one of them commits and the rest see UploadAlreadyConfirmed.

The commit itself (swap, file insert, usage bump) contains no await. A
caller that is cancelled mid-confirm is therefore cancelled either before
anything was written or after everything was. If the file insert fails
the swap is undone, so the same upload can be confirmed again.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Protocol

from ..crypto.vault import CredentialVault
from ..errors import (
    BucketNotFound,
    FileNotFound,
    ObjectNotFound,
    StorageError,
    UploadAlreadyConfirmed,
    UploadExpired,
    UploadNotFound,
    UploadVerificationFailed,
)
from ..limits.models import LimitKind
from ..limits.rate_limiter import RateLimiter
from ..limits.usage import UsageAggregator
from .models import (
    BucketCredentials,
    FileObject,
    ObjectSummary,
    ProjectRecord,
    RequestContext,
    SignedGetUrl,
    SignedPutUrl,
    UploadSession,
    UploadStatus,
    UploadTicket,
)
from .paths import PathResolver

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (UploadStatus.INIT, UploadStatus.AWAITING_PUT)
DEFAULT_MIME_TYPE = "application/octet-stream"


# ---------------------------------------------------------------------------
# Protocols (interfaces)
# ---------------------------------------------------------------------------

class ProjectDirectory(Protocol):
    """Looks up a project's slugs and stored bucket credentials."""

    def get_project(self, project_id: str) -> ProjectRecord:
        """Raises ProjectNotFound when the project doesn't exist."""
        ...


class UploadRepository(Protocol):
    """Persistence for upload sessions."""

    def create(self, session: UploadSession) -> None:
        ...

    def get(self, upload_id: str) -> Optional[UploadSession]:
        ...

    def transition(
        self,
        upload_id: str,
        from_statuses: tuple[UploadStatus, ...],
        to_status: UploadStatus,
    ) -> bool:
        """
        Move the session to to_status only if it is currently in one of
        from_statuses. Returns True if this call made the change.
        """
        ...

    def list_for_project(self, project_id: str, limit: int = 100) -> list[UploadSession]:
        """Newest first."""
        ...

    def expire_before(self, now: datetime) -> int:
        """Mark every active session with expires_at <= now as expired."""
        ...


class FileRepository(Protocol):
    """Persistence for committed files."""

    def create(self, file: FileObject) -> None:
        ...

    def get(self, file_id: str) -> Optional[FileObject]:
        ...

    def list_for_project(
        self,
        project_id: str,
        tenant_id: Optional[str] = None,
        path_prefix: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[FileObject]:
        """Newest first."""
        ...

    def delete(self, file_id: str) -> bool:
        """Returns True if a row was removed."""
        ...


class BucketStorage(Protocol):
    """The part of a storage adapter the broker relies on."""

    async def get_signed_put_url(
        self,
        path: str,
        content_type: Optional[str] = None,
        expires_in_seconds: int = 900,
        metadata: Optional[dict[str, str]] = None,
    ) -> SignedPutUrl:
        ...

    async def get_signed_get_url(self, path: str, expires_in_seconds: int = 900) -> str:
        ...

    async def list_objects(self, prefix: str) -> list[ObjectSummary]:
        ...

    async def delete_object(self, path: str) -> None:
        ...


AdapterFactory = Callable[[BucketCredentials], BucketStorage]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Broker
# ---------------------------------------------------------------------------

class UploadBroker:
    """
    Issues signed uploads and commits them once they land in the bucket.

    All collaborators are injected, so tests run the whole lifecycle with
    in-memory repositories and the mock storage adapter.
    """

    def __init__(
        self,
        projects: ProjectDirectory,
        uploads: UploadRepository,
        files: FileRepository,
        vault: CredentialVault,
        adapter_factory: AdapterFactory,
        rate_limiter: RateLimiter,
        usage: UsageAggregator,
        paths: Optional[PathResolver] = None,
        upload_expiry_seconds: int = 900,
        verify_timeout_seconds: float = 15.0,
        clock: Optional[Clock] = None,
    ) -> None:
        self._projects = projects
        self._uploads = uploads
        self._files = files
        self._vault = vault
        self._adapter_factory = adapter_factory
        self._rate_limiter = rate_limiter
        self._usage = usage
        self._paths = paths or PathResolver()
        self._upload_expiry_seconds = upload_expiry_seconds
        self._verify_timeout_seconds = verify_timeout_seconds
        self._clock = clock or _utcnow

    async def init_upload(
        self,
        ctx: RequestContext,
        file_name: str,
        tenant_id: Optional[str] = None,
        content_type: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> UploadTicket:
        """
        Start an upload and hand back a signed PUT URL.

        Raises:
            RateLimitExceeded: the project used up its upload window
            ProjectNotFound / BucketNotFound: nothing to upload into
            CipherError: stored credentials could not be decrypted
        """
        self._rate_limiter.enforce(ctx.project_id, LimitKind.UPLOADS)

        project = self._projects.get_project(ctx.project_id)
        path = self._paths.resolve(project.context, file_name, tenant_slug=tenant_id)
        adapter = self._adapter_for(project)

        caller_metadata = {str(k): str(v) for k, v in (metadata or {}).items()}
        object_metadata = {
            **caller_metadata,
            "project-id": ctx.project_id,
            "tenant-id": tenant_id or "",
            "api-key-id": ctx.api_key_id,
        }

        signed = await adapter.get_signed_put_url(
            path,
            content_type=content_type,
            expires_in_seconds=self._upload_expiry_seconds,
            metadata=object_metadata,
        )

        session = UploadSession(
            project_id=ctx.project_id,
            resolved_path=path,
            expires_at=signed.expires_at,
            tenant_id=tenant_id,
            content_type=content_type,
            status=UploadStatus.AWAITING_PUT,
            metadata=caller_metadata,
            api_key_id=ctx.api_key_id,
            created_at=self._clock(),
        )
        self._uploads.create(session)

        logger.info(
            "Upload initiated",
            extra={
                "upload_id": session.upload_id,
                "project_id": ctx.project_id,
                "path": path,
                "expires_at": signed.expires_at.isoformat(),
            },
        )

        return UploadTicket(
            upload_id=session.upload_id,
            upload_url=signed.url,
            path=path,
            expires_at=signed.expires_at,
            method=signed.method,
            headers=dict(signed.headers),
        )

    async def confirm_upload(
        self,
        ctx: RequestContext,
        upload_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> FileObject:
        """
        Commit an upload once its object is in the bucket.

        metadata may declare "size", "etag" and "content_type"; declared
        size and etag must match what the bucket reports.

        Raises:
            UploadNotFound: unknown id, or it belongs to another project
            UploadAlreadyConfirmed: a confirm for this id already committed
            UploadExpired: the signed URL's lifetime has passed
            ObjectNotFound: nothing was uploaded to the signed path yet
            UploadVerificationFailed: the stored object differs from the
                declared size or etag
        """
        metadata = dict(metadata or {})
        session = self._load_session(ctx, upload_id)

        if session.status is UploadStatus.CONFIRMED:
            raise UploadAlreadyConfirmed(f"Upload {upload_id} is already confirmed")
        if session.status is UploadStatus.EXPIRED:
            raise UploadExpired(f"Upload {upload_id} has expired")

        if self._expire_if_due(session):
            raise UploadExpired(f"Upload {upload_id} has expired")

        project = self._projects.get_project(ctx.project_id)
        adapter = self._adapter_for(project)
        stored = await self._verify_object(adapter, session, metadata)

        # Commit: no suspension points from here to the return.
        # Verification may have outlived the signed URL.
        if self._expire_if_due(session):
            raise UploadExpired(f"Upload {upload_id} has expired")

        if not self._uploads.transition(upload_id, ACTIVE_STATUSES, UploadStatus.CONFIRMED):
            current = self._uploads.get(upload_id)
            if current is not None and current.status is UploadStatus.EXPIRED:
                raise UploadExpired(f"Upload {upload_id} has expired")
            raise UploadAlreadyConfirmed(f"Upload {upload_id} is already confirmed")

        file = FileObject(
            project_id=session.project_id,
            tenant_id=session.tenant_id,
            path=session.resolved_path,
            size=stored.size,
            mime_type=str(metadata.get("content_type") or session.content_type or DEFAULT_MIME_TYPE),
            uploaded_at=self._clock(),
            metadata={
                **session.metadata,
                "upload_id": upload_id,
                "etag": stored.etag or "",
                "api_key_id": ctx.api_key_id,
            },
        )

        try:
            self._files.create(file)
        except Exception:
            logger.exception(
                "File record failed, reopening upload for retry",
                extra={"upload_id": upload_id, "project_id": ctx.project_id},
            )
            # A confirmed session must always have its file
            self._uploads.transition(
                upload_id, (UploadStatus.CONFIRMED,), UploadStatus.AWAITING_PUT
            )
            raise

        try:
            self._usage.bump(ctx.project_id, uploads=1, bandwidth_bytes=stored.size)
        except Exception:
            # The file stays committed; reconciliation replays the increment
            logger.exception(
                "Usage increment failed after upload was confirmed; needs reconciliation",
                extra={
                    "upload_id": upload_id,
                    "project_id": ctx.project_id,
                    "file_id": file.id,
                    "bandwidth_bytes": stored.size,
                },
            )

        logger.info(
            "Upload confirmed",
            extra={
                "upload_id": upload_id,
                "project_id": ctx.project_id,
                "file_id": file.id,
                "size_bytes": stored.size,
            },
        )
        return file

    def list_uploads(self, ctx: RequestContext, limit: int = 100) -> list[UploadSession]:
        """Most recent upload sessions of the caller's project."""
        return self._uploads.list_for_project(ctx.project_id, limit=limit)

    def get_upload(self, ctx: RequestContext, upload_id: str) -> UploadSession:
        """
        Look up one session, expiring it first if its time has passed.
        """
        session = self._load_session(ctx, upload_id)
        if session.status in ACTIVE_STATUSES and session.is_expired_at(self._clock()):
            self._uploads.transition(upload_id, ACTIVE_STATUSES, UploadStatus.EXPIRED)
            session = self._load_session(ctx, upload_id)
        return session

    def expire_stale_uploads(self, now: Optional[datetime] = None) -> int:
        """Sweep every active session past its expiry into expired."""
        count = self._uploads.expire_before(now or self._clock())
        if count:
            logger.info("Expired stale uploads", extra={"count": count})
        return count

    # -----------------------------------------------------------------------
    # Committed files
    # -----------------------------------------------------------------------

    def list_files(
        self,
        ctx: RequestContext,
        tenant_id: Optional[str] = None,
        path_prefix: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[FileObject]:
        """Committed files of the caller's project, newest first."""
        return self._files.list_for_project(
            ctx.project_id,
            tenant_id=tenant_id,
            path_prefix=path_prefix,
            limit=limit,
            offset=offset,
        )

    def get_file(self, ctx: RequestContext, file_id: str) -> FileObject:
        """Raises FileNotFound for unknown ids and other projects' files."""
        file = self._files.get(file_id)
        if file is None or file.project_id != ctx.project_id:
            raise FileNotFound(f"File {file_id} not found")
        return file

    async def get_download_url(
        self,
        ctx: RequestContext,
        file_id: str,
        expires_in_seconds: Optional[int] = None,
    ) -> SignedGetUrl:
        """Signed GET URL for a committed file."""
        file = self.get_file(ctx, file_id)
        expires_in = expires_in_seconds or self._upload_expiry_seconds

        adapter = self._adapter_for(self._projects.get_project(ctx.project_id))
        url = await adapter.get_signed_get_url(file.path, expires_in_seconds=expires_in)

        return SignedGetUrl(
            url=url,
            expires_at=self._clock() + timedelta(seconds=expires_in),
        )

    async def delete_file(self, ctx: RequestContext, file_id: str) -> FileObject:
        """
        Remove a committed file from the bucket and from the file records.

        The object goes first: if the bucket call fails the record stays,
        and the delete can simply be retried.
        """
        file = self.get_file(ctx, file_id)

        adapter = self._adapter_for(self._projects.get_project(ctx.project_id))
        await adapter.delete_object(file.path)

        if not self._files.delete(file_id):
            # A concurrent delete removed the row first
            raise FileNotFound(f"File {file_id} not found")

        logger.info(
            "File deleted",
            extra={"file_id": file_id, "project_id": ctx.project_id, "path": file.path},
        )
        return file

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _expire_if_due(self, session: UploadSession) -> bool:
        if not session.is_expired_at(self._clock()):
            return False
        self._uploads.transition(session.upload_id, ACTIVE_STATUSES, UploadStatus.EXPIRED)
        logger.info(
            "Late confirm for expired upload",
            extra={"upload_id": session.upload_id, "project_id": session.project_id},
        )
        return True

    def _load_session(self, ctx: RequestContext, upload_id: str) -> UploadSession:
        session = self._uploads.get(upload_id)
        # Another project's upload is reported the same as a missing one
        if session is None or session.project_id != ctx.project_id:
            raise UploadNotFound(f"Upload {upload_id} not found")
        return session

    def _adapter_for(self, project: ProjectRecord) -> BucketStorage:
        stored = project.credential
        if stored is None:
            raise BucketNotFound(f"Project {project.project_id} has no bucket")

        credentials = BucketCredentials(
            provider_type=stored.provider_type,
            bucket_name=stored.bucket_name,
            access_key_id=self._vault.decrypt(stored.encrypted_access_key),
            secret_access_key=self._vault.decrypt(stored.encrypted_secret_key),
            region=stored.region,
            endpoint=stored.endpoint,
        )
        return self._adapter_factory(credentials)

    async def _verify_object(
        self,
        adapter: BucketStorage,
        session: UploadSession,
        metadata: dict[str, Any],
    ) -> ObjectSummary:
        try:
            listing = await asyncio.wait_for(
                adapter.list_objects(session.resolved_path),
                timeout=self._verify_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise StorageError(f"Verifying upload {session.upload_id} timed out")

        stored = next((obj for obj in listing if obj.key == session.resolved_path), None)
        if stored is None:
            raise ObjectNotFound(
                f"Nothing has been uploaded to {session.resolved_path} yet"
            )

        declared_size = metadata.get("size")
        if declared_size is not None and int(declared_size) != stored.size:
            raise UploadVerificationFailed(
                f"Declared size {declared_size} does not match stored size {stored.size}"
            )

        declared_etag = metadata.get("etag")
        if declared_etag and stored.etag and str(declared_etag).strip('"') != stored.etag:
            raise UploadVerificationFailed("Declared etag does not match stored object")

        return stored
