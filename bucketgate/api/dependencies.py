"""
FastAPI dependency injection.

Dependencies build the core services for each request from settings:
- the API key is turned into an explicit RequestContext
- repositories are Snowflake-backed, or shared in-memory ones in mock mode
- bucket adapters come from boto3, or from a shared in-memory backend

Routes never instantiate their own collaborators, so tests can swap any
of them through app.dependency_overrides.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache, partial
from typing import Annotated, Generator, Optional

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ..config.settings import Settings, get_settings
from ..core.crypto.vault import CredentialVault
from ..core.limits.rate_limiter import InMemoryRateLimiter, RateLimiter
from ..core.limits.usage import UsageAggregator, UsageRepository
from ..core.uploads.broker import (
    AdapterFactory,
    FileRepository,
    ProjectDirectory,
    UploadBroker,
    UploadRepository,
)
from ..core.uploads.models import (
    ProjectContext,
    ProjectRecord,
    ProviderCredential,
    ProviderType,
    RequestContext,
)
from ..core.uploads.paths import sanitize_slug
from ..infrastructure.memory import (
    InMemoryFileRepository,
    InMemoryProjectDirectory,
    InMemoryUploadRepository,
    InMemoryUsageRepository,
)
from ..infrastructure.snowflake.client import SnowflakeConfig, get_snowflake_connection
from ..infrastructure.snowflake.repositories import (
    SnowflakeFileRepository,
    SnowflakeProjectDirectory,
    SnowflakeRateLimiter,
    SnowflakeUploadRepository,
    SnowflakeUsageRepository,
)
from ..infrastructure.storage.client import MockStorageBackend, create_storage_adapter

logger = logging.getLogger(__name__)

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


@dataclass
class Repositories:
    """Everything the core persists, for one request."""
    projects: ProjectDirectory
    uploads: UploadRepository
    files: FileRepository
    usage: UsageRepository
    rate_limiter: RateLimiter


# Global mock instances (shared across requests so data persists in mock mode)
_mock_repositories: Optional[Repositories] = None
_mock_storage_backend: Optional[MockStorageBackend] = None


MOCK_ORGANIZATION_SLUG = "mock-org"
MOCK_TEAM_SLUG = "mock-team"


def _mock_projects(settings: Settings) -> list[ProjectRecord]:
    """
    One project per configured API key, each with its own mock bucket.

    Credentials are sealed with the configured vault key, so the broker
    decrypts them exactly as it would rows from Snowflake. Without a key
    the projects have no bucket.
    """
    vault = (
        _vault_for_key(settings.credentials_encryption_key)
        if settings.credentials_encryption_key
        else None
    )

    projects = []
    for project_id in sorted(set(settings.api_key_projects.values())):
        slug = sanitize_slug(project_id) or "project"
        credential = None
        if vault is not None:
            credential = ProviderCredential(
                owner_id=project_id,
                provider_type=ProviderType.R2,
                bucket_name=f"mock-{slug}",
                encrypted_access_key=vault.encrypt("mock-access-key"),
                encrypted_secret_key=vault.encrypt("mock-secret-key"),
            )
        projects.append(ProjectRecord(
            project_id=project_id,
            context=ProjectContext(MOCK_ORGANIZATION_SLUG, MOCK_TEAM_SLUG, slug),
            credential=credential,
        ))
    return projects


def get_mock_repositories(settings: Settings) -> Repositories:
    """Shared in-memory repositories, created on first use."""
    global _mock_repositories

    if _mock_repositories is None:
        projects = _mock_projects(settings)
        _mock_repositories = Repositories(
            projects=InMemoryProjectDirectory(projects),
            uploads=InMemoryUploadRepository(),
            files=InMemoryFileRepository(),
            usage=InMemoryUsageRepository(),
            rate_limiter=InMemoryRateLimiter(settings.rate_limit_policy()),
        )
        logger.info(
            "Created shared in-memory repositories",
            extra={"projects": [p.project_id for p in projects]},
        )
    return _mock_repositories


def get_mock_storage_backend() -> MockStorageBackend:
    global _mock_storage_backend

    if _mock_storage_backend is None:
        _mock_storage_backend = MockStorageBackend()
    return _mock_storage_backend


def reset_mock_state() -> None:
    """Drop all shared mock state (for tests)."""
    global _mock_repositories, _mock_storage_backend
    _mock_repositories = None
    _mock_storage_backend = None


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

def _key_prefix(api_key: str) -> str:
    return api_key[:8] if api_key else ""


async def verify_api_key(
    settings: Annotated[Settings, Depends(get_settings)],
    api_key: str = Security(api_key_header),
) -> RequestContext:
    """
    Validate the API key and resolve the project it may act on.

    Raises 403 if key is invalid or missing.
    """
    if not api_key:
        logger.warning("Request missing API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="API key required. Provide X-API-Key header.",
        )

    project_id = settings.api_key_projects.get(api_key)
    if project_id is None:
        logger.warning(
            "Invalid API key attempt",
            extra={"key_prefix": _key_prefix(api_key)}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    return RequestContext(project_id=project_id, api_key_id=_key_prefix(api_key))


async def verify_admin_key(
    settings: Annotated[Settings, Depends(get_settings)],
    api_key: str = Security(api_key_header),
) -> str:
    """Only admin keys may reset rate limits."""
    if not api_key or api_key not in settings.admin_api_keys_list:
        logger.warning(
            "Rejected admin request",
            extra={"key_prefix": _key_prefix(api_key)}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin API key required",
        )
    return _key_prefix(api_key)


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

@lru_cache()
def _vault_for_key(encoded_key: str) -> CredentialVault:
    return CredentialVault(encoded_key)


def get_vault(
    settings: Annotated[Settings, Depends(get_settings)],
) -> CredentialVault:
    """
    The credential vault. Stateless, so one instance per key is shared
    by every request.
    """
    return _vault_for_key(settings.credentials_encryption_key)


def snowflake_config_from_settings(settings: Settings) -> SnowflakeConfig:
    return SnowflakeConfig(
        account=settings.snowflake_account,
        user=settings.snowflake_user,
        password=settings.snowflake_password or None,
        private_key_path=settings.snowflake_private_key_path,
        private_key_base64=settings.snowflake_private_key_base64,
        database=settings.snowflake_database,
        schema=settings.snowflake_schema,
        warehouse=settings.snowflake_warehouse,
        role=settings.snowflake_role,
    )


def get_repositories(
    settings: Annotated[Settings, Depends(get_settings)],
) -> Generator[Repositories, None, None]:
    """
    Provide repositories for one request.

    This is a generator so FastAPI closes the Snowflake connection after
    the response. In mock mode the same in-memory repositories are handed
    to every request so that data persists during the session.
    """
    if settings.snowflake_mock_mode:
        yield get_mock_repositories(settings)
        return

    with get_snowflake_connection(snowflake_config_from_settings(settings)) as conn:
        yield Repositories(
            projects=SnowflakeProjectDirectory(conn),
            uploads=SnowflakeUploadRepository(conn),
            files=SnowflakeFileRepository(conn),
            usage=SnowflakeUsageRepository(conn),
            rate_limiter=SnowflakeRateLimiter(
                conn,
                settings.rate_limit_policy(),
                fail_open=settings.rate_limit_fail_open,
            ),
        )


def get_adapter_factory(
    settings: Annotated[Settings, Depends(get_settings)],
) -> AdapterFactory:
    """Builds bucket adapters from decrypted credentials."""
    return partial(
        create_storage_adapter,
        mock_mode=settings.storage_mock_mode,
        operation_timeout_seconds=settings.storage_operation_timeout_seconds,
        mock_backend=get_mock_storage_backend() if settings.storage_mock_mode else None,
    )


def get_rate_limiter(
    repositories: Annotated[Repositories, Depends(get_repositories)],
) -> RateLimiter:
    return repositories.rate_limiter


def get_usage_aggregator(
    repositories: Annotated[Repositories, Depends(get_repositories)],
) -> UsageAggregator:
    return UsageAggregator(repositories.usage)


def get_upload_broker(
    settings: Annotated[Settings, Depends(get_settings)],
    repositories: Annotated[Repositories, Depends(get_repositories)],
    vault: Annotated[CredentialVault, Depends(get_vault)],
    adapter_factory: Annotated[AdapterFactory, Depends(get_adapter_factory)],
    usage: Annotated[UsageAggregator, Depends(get_usage_aggregator)],
) -> UploadBroker:
    return UploadBroker(
        projects=repositories.projects,
        uploads=repositories.uploads,
        files=repositories.files,
        vault=vault,
        adapter_factory=adapter_factory,
        rate_limiter=repositories.rate_limiter,
        usage=usage,
        upload_expiry_seconds=settings.upload_url_expiry_seconds,
        verify_timeout_seconds=settings.upload_verify_timeout_seconds,
    )


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
AuthenticatedProject = Annotated[RequestContext, Depends(verify_api_key)]
AdminKey = Annotated[str, Depends(verify_admin_key)]
UploadBrokerDep = Annotated[UploadBroker, Depends(get_upload_broker)]
UsageAggregatorDep = Annotated[UsageAggregator, Depends(get_usage_aggregator)]
RateLimiterDep = Annotated[RateLimiter, Depends(get_rate_limiter)]
RepositoriesDep = Annotated[Repositories, Depends(get_repositories)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
