"""
File API endpoints.

Files are what confirmed uploads become. Listing and lookups only read
file records; download links and deletes also talk to the project's
bucket.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query, status
from pydantic import BaseModel

from ..dependencies import AuthenticatedProject, UploadBrokerDep
from .uploads import FileResponse

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Response Models
# ---------------------------------------------------------------------------

class FileListResponse(BaseModel):
    files: list[FileResponse]
    count: int
    limit: int
    offset: int


class DownloadUrlResponse(BaseModel):
    """Signed download link for one file."""
    file_id: str
    url: str
    expires_at: datetime


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=FileListResponse,
    summary="List files",
    description="Committed files of the authenticated project, newest first",
)
async def list_files(
    ctx: AuthenticatedProject,
    broker: UploadBrokerDep,
    tenant_id: Optional[str] = Query(default=None, max_length=255),
    path: Optional[str] = Query(default=None, description="Only files whose key starts with this"),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> FileListResponse:
    files = broker.list_files(
        ctx, tenant_id=tenant_id, path_prefix=path, limit=limit, offset=offset
    )
    return FileListResponse(
        files=[FileResponse.from_file(f) for f in files],
        count=len(files),
        limit=limit,
        offset=offset,
    )


@router.get(
    "/{file_id}",
    response_model=FileResponse,
    summary="Get a file",
    responses={404: {"description": "File not found"}},
)
async def get_file(
    file_id: str,
    ctx: AuthenticatedProject,
    broker: UploadBrokerDep,
) -> FileResponse:
    return FileResponse.from_file(broker.get_file(ctx, file_id))


@router.get(
    "/{file_id}/download",
    response_model=DownloadUrlResponse,
    summary="Get a download URL",
    description="Signed GET URL for the file's object in the project bucket",
    responses={404: {"description": "File not found"}},
)
async def get_download_url(
    file_id: str,
    ctx: AuthenticatedProject,
    broker: UploadBrokerDep,
    expires_in: Optional[int] = Query(default=None, ge=1, le=7 * 24 * 3600),
) -> DownloadUrlResponse:
    link = await broker.get_download_url(ctx, file_id, expires_in_seconds=expires_in)
    return DownloadUrlResponse(file_id=file_id, url=link.url, expires_at=link.expires_at)


@router.delete(
    "/{file_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a file",
    description="Removes the object from the bucket and the file record",
    responses={404: {"description": "File not found"}},
)
async def delete_file(
    file_id: str,
    ctx: AuthenticatedProject,
    broker: UploadBrokerDep,
) -> None:
    file = await broker.delete_file(ctx, file_id)
    logger.info(
        "File deleted via API",
        extra={"file_id": file.id, "project_id": ctx.project_id, "key_prefix": ctx.api_key_id},
    )
