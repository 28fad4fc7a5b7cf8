"""
Upload API endpoints.

Bytes never pass through this service. The flow is:
1. POST /init returns a signed PUT URL for the caller's project bucket
2. The client PUTs the file straight to that URL
3. POST /{upload_id}/confirm verifies the object and records the file

Errors raised by the broker (rate limits, expired sessions, missing
objects...) are translated to responses by the app's GatewayError handler.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from ...core.uploads.models import FileObject, UploadSession
from ..dependencies import AuthenticatedProject, UploadBrokerDep

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class InitUploadRequest(BaseModel):
    """Request to start an upload."""
    file_name: str = Field(
        description="Object name relative to the project (may contain sub-folders)",
        min_length=1,
        max_length=1024,
    )
    tenant_id: Optional[str] = Field(
        None,
        description="Tenant slug; scopes the object under tenants/{tenant_id}",
        max_length=255,
    )
    content_type: Optional[str] = Field(None, description="MIME type the client will send")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Caller metadata stored with the session and the object",
    )


class InitUploadResponse(BaseModel):
    """Signed upload instructions."""
    upload_id: str = Field(description="Pass this to the confirm endpoint")
    upload_url: str = Field(description="Signed URL to PUT the file to")
    method: str = Field(description="HTTP method to use with upload_url")
    headers: dict[str, str] = Field(description="Headers the PUT must carry")
    path: str = Field(description="Resolved object key inside the bucket")
    expires_at: datetime = Field(description="When the signed URL stops working")


class ConfirmUploadRequest(BaseModel):
    """Optional declarations checked against the stored object."""
    size: Optional[int] = Field(None, ge=0, description="Expected object size in bytes")
    etag: Optional[str] = Field(None, description="Expected object ETag")
    content_type: Optional[str] = Field(None, description="MIME type to record for the file")


class FileResponse(BaseModel):
    """A committed file."""
    id: str
    project_id: str
    tenant_id: Optional[str] = None
    path: str
    filename: str
    version: str
    size: int
    mime_type: str
    uploaded_at: datetime
    metadata: dict[str, str] = {}

    @classmethod
    def from_file(cls, file: FileObject) -> "FileResponse":
        return cls(
            id=file.id,
            project_id=file.project_id,
            tenant_id=file.tenant_id,
            path=file.path,
            filename=file.filename,
            version=file.version,
            size=file.size,
            mime_type=file.mime_type,
            uploaded_at=file.uploaded_at,
            metadata=file.metadata,
        )


class UploadSessionResponse(BaseModel):
    """State of one upload session."""
    upload_id: str
    project_id: str
    tenant_id: Optional[str] = None
    path: str
    content_type: Optional[str] = None
    status: str
    expires_at: datetime
    created_at: datetime
    metadata: dict[str, str] = {}

    @classmethod
    def from_session(cls, session: UploadSession) -> "UploadSessionResponse":
        return cls(
            upload_id=session.upload_id,
            project_id=session.project_id,
            tenant_id=session.tenant_id,
            path=session.resolved_path,
            content_type=session.content_type,
            status=session.status.value,
            expires_at=session.expires_at,
            created_at=session.created_at,
            metadata=session.metadata,
        )


class UploadListResponse(BaseModel):
    uploads: list[UploadSessionResponse]
    count: int


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/init",
    response_model=InitUploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start an upload",
    description="Returns a signed URL the client uploads the file to directly",
    responses={
        404: {"description": "Project or bucket not configured"},
        429: {"description": "Upload rate limit exceeded"},
    },
)
async def init_upload(
    request: InitUploadRequest,
    ctx: AuthenticatedProject,
    broker: UploadBrokerDep,
) -> InitUploadResponse:
    """
    Start an upload for the authenticated project.

    Counts against the project's upload rate limit. The signed URL is
    valid for the configured expiry; the upload must be confirmed before
    then.
    """
    logger.info(
        "Upload init requested",
        extra={
            "project_id": ctx.project_id,
            "file_name": request.file_name,
            "tenant_id": request.tenant_id,
        }
    )

    try:
        ticket = await broker.init_upload(
            ctx,
            request.file_name,
            tenant_id=request.tenant_id,
            content_type=request.content_type,
            metadata=request.metadata,
        )
    except ValueError as e:
        # Path resolution rejects traversal and malformed segments
        logger.warning(
            "Rejected upload path",
            extra={"project_id": ctx.project_id, "error": str(e)}
        )
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )

    return InitUploadResponse(
        upload_id=ticket.upload_id,
        upload_url=ticket.upload_url,
        method=ticket.method,
        headers=ticket.headers,
        path=ticket.path,
        expires_at=ticket.expires_at,
    )


@router.post(
    "/{upload_id}/confirm",
    response_model=FileResponse,
    status_code=status.HTTP_200_OK,
    summary="Confirm an upload",
    description="Verifies the object is in the bucket and records the file",
    responses={
        404: {"description": "Upload unknown, or nothing uploaded yet"},
        409: {"description": "Upload already confirmed"},
        410: {"description": "Upload expired"},
        422: {"description": "Stored object does not match the declaration"},
    },
)
async def confirm_upload(
    upload_id: str,
    ctx: AuthenticatedProject,
    broker: UploadBrokerDep,
    request: Optional[ConfirmUploadRequest] = None,
) -> FileResponse:
    """
    Confirm an upload once the client's PUT has finished.

    Safe to retry: only the first successful confirm records a file,
    every later one gets 409.
    """
    declared = request.model_dump(exclude_none=True) if request else {}

    file = await broker.confirm_upload(ctx, upload_id, metadata=declared)

    return FileResponse.from_file(file)


@router.get(
    "",
    response_model=UploadListResponse,
    summary="List uploads",
    description="Most recent upload sessions of the authenticated project",
)
async def list_uploads(
    ctx: AuthenticatedProject,
    broker: UploadBrokerDep,
    limit: int = Query(default=100, ge=1, le=1000),
) -> UploadListResponse:
    sessions = broker.list_uploads(ctx, limit=limit)
    return UploadListResponse(
        uploads=[UploadSessionResponse.from_session(s) for s in sessions],
        count=len(sessions),
    )


@router.get(
    "/{upload_id}",
    response_model=UploadSessionResponse,
    summary="Get an upload",
    responses={404: {"description": "Upload not found"}},
)
async def get_upload(
    upload_id: str,
    ctx: AuthenticatedProject,
    broker: UploadBrokerDep,
) -> UploadSessionResponse:
    """Current state of one upload session; expired sessions report 'expired'."""
    return UploadSessionResponse.from_session(broker.get_upload(ctx, upload_id))
