"""
Health check endpoints.

Health checks are essential for:
- Load balancers to know if the service is alive
- Deployment systems to verify rollouts

We provide two endpoints:
- /health: Basic liveness check (is the process running?)
- /health/ready: Readiness check (can we serve traffic?)

Readiness covers configuration, the vault key and the Snowflake
connection. Customer buckets are not probed; each one belongs to a
project and an unreachable bucket only affects that project.
"""

import logging
from typing import Any

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from ...core.crypto.vault import CredentialVault
from ...core.errors import ConfigurationError
from ...infrastructure.snowflake.client import get_snowflake_connection
from ..dependencies import SettingsDep, snowflake_config_from_settings

logger = logging.getLogger(__name__)

router = APIRouter()

SERVICE_VERSION = "0.1.0"


class HealthResponse(BaseModel):
    """
    Health check response.

    Standardized format makes it easy for monitoring tools to parse.
    """
    status: str
    version: str
    details: dict[str, Any] = {}


class ReadinessCheck(BaseModel):
    """Individual readiness check result."""
    name: str
    status: str  # "ok" or "error"
    error: str | None = None


class ReadinessResponse(BaseModel):
    """Readiness check response with details."""
    status: str  # "ready" or "not_ready"
    version: str
    checks: list[ReadinessCheck]


@router.get(
    "",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
    description="Returns 200 if the service is running. Does not check dependencies.",
)
async def health_check(settings: SettingsDep) -> HealthResponse:
    """
    Liveness check - is the process alive?

    Must stay fast and must not touch external dependencies.
    """
    return HealthResponse(
        status="ok",
        version=SERVICE_VERSION,
        details={
            "environment": settings.environment,
            "mock_mode": {
                "snowflake": settings.snowflake_mock_mode,
                "storage": settings.storage_mock_mode,
            },
            "rate_limit_bypass": settings.rate_limit_bypass,
        }
    )


def _check_configuration(settings) -> ReadinessCheck:
    missing_fields = settings.validate_required_fields()
    if missing_fields:
        return ReadinessCheck(
            name="configuration",
            status="error",
            error=f"Missing required fields: {', '.join(missing_fields)}"
        )
    return ReadinessCheck(name="configuration", status="ok")


def _check_vault(settings) -> ReadinessCheck:
    try:
        CredentialVault(settings.credentials_encryption_key)
    except ConfigurationError as e:
        return ReadinessCheck(name="vault", status="error", error=e.message)
    return ReadinessCheck(name="vault", status="ok")


def _check_database(settings) -> ReadinessCheck:
    if settings.snowflake_mock_mode:
        return ReadinessCheck(name="database", status="ok", error="mock mode")

    try:
        with get_snowflake_connection(snowflake_config_from_settings(settings)) as conn:
            cursor = conn.cursor()
            try:
                cursor.execute("SELECT 1")
                cursor.fetchone()
            finally:
                cursor.close()
    except Exception as e:
        logger.error("Database health check failed", extra={"error": str(e)})
        return ReadinessCheck(name="database", status="error", error=str(e))

    return ReadinessCheck(name="database", status="ok")


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    status_code=status.HTTP_200_OK,
    summary="Readiness check",
    description="Returns 200 if the service can handle traffic. Checks external dependencies.",
    responses={
        503: {
            "description": "Service not ready",
            "model": ReadinessResponse,
        }
    },
)
async def readiness_check(settings: SettingsDep, response: Response) -> ReadinessResponse:
    """
    Readiness check - can we serve traffic?

    Returns 503 if any check fails, which tells load balancers not
    to route traffic here.
    """
    checks = [
        _check_configuration(settings),
        _check_vault(settings),
        _check_database(settings),
    ]
    all_ok = all(check.status == "ok" for check in checks)

    if not all_ok:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        logger.warning(
            "Readiness check failed",
            extra={
                "checks": [
                    {"name": c.name, "status": c.status, "error": c.error}
                    for c in checks
                ]
            }
        )

    return ReadinessResponse(
        status="ready" if all_ok else "not_ready",
        version=SERVICE_VERSION,
        checks=checks,
    )
