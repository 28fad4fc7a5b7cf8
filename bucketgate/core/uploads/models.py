"""
Domain models for the upload lifecycle.

These models carry no knowledge of Snowflake, boto3 or FastAPI. Repositories
and adapters translate to and from them.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProviderType(Enum):
    """Object storage provider families."""
    S3 = "s3"
    R2 = "r2"


class UploadStatus(Enum):
    """
    Upload session states.

    init -> awaiting_put -> confirmed, or init/awaiting_put -> expired.
    confirmed and expired are terminal.
    """
    INIT = "init"
    AWAITING_PUT = "awaiting_put"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadStatus.CONFIRMED, UploadStatus.EXPIRED)


@dataclass(frozen=True)
class RequestContext:
    """
    Identity of the caller, resolved by the API-key layer.

    Passed explicitly into every broker call instead of being attached
    to a request object.
    """
    project_id: str
    api_key_id: str = ""


@dataclass(frozen=True)
class ProjectContext:
    """Slugs that scope every object key of a project."""
    organization_slug: str
    team_slug: str
    project_slug: str


@dataclass(frozen=True)
class ProviderCredential:
    """
    Bucket credentials as stored: secrets are vault blobs, never plaintext.
    """
    owner_id: str  # project id or bucket id
    provider_type: ProviderType
    bucket_name: str
    encrypted_access_key: str
    encrypted_secret_key: str
    region: Optional[str] = None
    endpoint: Optional[str] = None


@dataclass(frozen=True)
class BucketCredentials:
    """
    Decrypted credentials for a single request.

    Built right before an adapter is created and dropped with it.
    """
    provider_type: ProviderType
    bucket_name: str
    access_key_id: str
    secret_access_key: str
    region: Optional[str] = None
    endpoint: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f"BucketCredentials(provider_type={self.provider_type.value!r}, "
            f"bucket_name={self.bucket_name!r}, access_key_id='***', "
            f"secret_access_key='***')"
        )


@dataclass(frozen=True)
class ProjectRecord:
    """What the project directory knows about a project."""
    project_id: str
    context: ProjectContext
    credential: Optional[ProviderCredential] = None


@dataclass(frozen=True)
class SignedPutUrl:
    """A time-bounded, pre-authorized upload URL."""
    url: str
    expires_at: datetime
    method: str = "PUT"
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SignedGetUrl:
    """A time-bounded download URL for a committed file."""
    url: str
    expires_at: datetime


@dataclass(frozen=True)
class ObjectSummary:
    """One entry of a bucket listing."""
    key: str
    size: int
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None


@dataclass
class StoredObject:
    """An object read back from a bucket."""
    key: str
    body: bytes
    content_type: Optional[str] = None
    content_length: int = 0
    metadata: dict[str, str] = field(default_factory=dict)
    etag: Optional[str] = None


@dataclass
class UploadSession:
    """
    A client upload in progress.

    upload_id is the idempotency key: at most one session per id can
    ever reach CONFIRMED.
    """
    project_id: str
    resolved_path: str
    expires_at: datetime
    upload_id: str = field(default_factory=lambda: str(uuid4()))
    tenant_id: Optional[str] = None
    content_type: Optional[str] = None
    status: UploadStatus = UploadStatus.INIT
    metadata: dict[str, str] = field(default_factory=dict)
    api_key_id: str = ""
    created_at: datetime = field(default_factory=utcnow)

    def is_expired_at(self, now: datetime) -> bool:
        return now >= self.expires_at

    def with_status(self, status: UploadStatus) -> "UploadSession":
        return replace(self, status=status)


@dataclass
class FileObject:
    """
    A committed file. Created only from a confirmed upload session and
    never modified afterwards.
    """
    project_id: str
    path: str
    size: int
    mime_type: str
    id: str = field(default_factory=lambda: str(uuid4()))
    tenant_id: Optional[str] = None
    version: str = "v1"
    uploaded_at: datetime = field(default_factory=utcnow)
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def filename(self) -> str:
        return self.path.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class UploadTicket:
    """What init_upload hands back to the client."""
    upload_id: str
    upload_url: str
    path: str
    expires_at: datetime
    method: str = "PUT"
    headers: dict[str, str] = field(default_factory=dict)
