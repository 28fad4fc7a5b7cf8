"""
Error taxonomy for the storage gateway core.

Every error the core raises derives from GatewayError and carries an HTTP
status code plus a stable machine-readable code. The API layer maps these
to responses in one place; the core itself never imports FastAPI.

Nothing in the core retries. Cryptographic and storage failures surface
to the caller, who decides whether a retry makes sense.
"""

from typing import Optional


class GatewayError(Exception):
    """Base class for all storage gateway errors."""
    status_code: int = 500
    code: str = "INT_001"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__doc__ or self.__class__.__name__)
        self.message = str(self)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigurationError(GatewayError):
    """Invalid configuration detected at startup."""
    code = "CFG_001"


# ---------------------------------------------------------------------------
# Cryptography
# ---------------------------------------------------------------------------

class CipherError(GatewayError):
    """Credential decryption failed."""
    code = "CRY_001"


class UnsupportedCipherVersion(CipherError):
    """Encrypted blob carries an unknown cipher version tag."""
    code = "CRY_002"


class AuthenticationFailure(CipherError):
    """Encrypted blob failed authentication (tampered or wrong key)."""
    code = "CRY_003"


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

class NotFoundError(GatewayError):
    """Requested resource does not exist."""
    status_code = 404
    code = "RES_001"


class ProjectNotFound(NotFoundError):
    """Project not found."""
    code = "RES_002"


class FileNotFound(NotFoundError):
    """File not found."""
    code = "RES_003"


class BucketNotFound(NotFoundError):
    """Project has no bucket configured."""
    code = "RES_004"


class UploadNotFound(NotFoundError):
    """Upload not found."""
    code = "RES_008"


class ObjectNotFound(NotFoundError):
    """Object not found in bucket."""
    code = "STOR_006"


# ---------------------------------------------------------------------------
# Upload lifecycle
# ---------------------------------------------------------------------------

class ConflictError(GatewayError):
    """Request conflicts with the current resource state."""
    status_code = 409
    code = "CON_001"


class UploadAlreadyConfirmed(ConflictError):
    """Upload has already been confirmed."""
    code = "CON_002"


class ExpiredError(GatewayError):
    """Resource has expired."""
    status_code = 410
    code = "EXP_001"


class UploadExpired(ExpiredError):
    """Upload session has expired. Start a new upload."""
    code = "EXP_002"


class UploadVerificationFailed(GatewayError):
    """Uploaded object does not match what the client declared."""
    status_code = 422
    code = "STOR_007"


# ---------------------------------------------------------------------------
# Admission control
# ---------------------------------------------------------------------------

class RateLimitExceeded(GatewayError):
    """Rate limit exceeded."""
    status_code = 429
    code = "RATE_001"

    def __init__(self, message: str = "", retry_after_seconds: Optional[int] = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class StorageError(GatewayError):
    """Raised when storage operations fail."""
    status_code = 502
    code = "STOR_001"
