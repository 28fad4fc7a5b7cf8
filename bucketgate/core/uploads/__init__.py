"""
Upload lifecycle: models, object key resolution and the upload broker.
"""

from .broker import (
    FileRepository,
    ProjectDirectory,
    UploadBroker,
    UploadRepository,
)
from .models import (
    BucketCredentials,
    FileObject,
    ProjectContext,
    ProjectRecord,
    ProviderCredential,
    ProviderType,
    RequestContext,
    SignedGetUrl,
    SignedPutUrl,
    UploadSession,
    UploadStatus,
    UploadTicket,
)
from .paths import PathResolver, resolve_path, sanitize_slug

__all__ = [
    "FileRepository",
    "ProjectDirectory",
    "UploadBroker",
    "UploadRepository",
    "BucketCredentials",
    "FileObject",
    "ProjectContext",
    "ProjectRecord",
    "ProviderCredential",
    "ProviderType",
    "RequestContext",
    "SignedGetUrl",
    "SignedPutUrl",
    "UploadSession",
    "UploadStatus",
    "UploadTicket",
    "PathResolver",
    "resolve_path",
    "sanitize_slug",
]
