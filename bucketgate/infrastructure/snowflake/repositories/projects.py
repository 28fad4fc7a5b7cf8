"""
Snowflake lookup of projects and their bucket credentials.

Credentials come back exactly as stored, still encrypted. Decryption is
the upload broker's job and happens per request.
"""

import logging

from ....core.errors import ProjectNotFound
from ....core.uploads.models import (
    ProjectContext,
    ProjectRecord,
    ProviderCredential,
    ProviderType,
)
from ..client import SnowflakeConnection

logger = logging.getLogger(__name__)


class SnowflakeProjectDirectory:
    """Resolves a project id to its slugs and bucket."""

    def __init__(self, connection: SnowflakeConnection) -> None:
        self._conn = connection

    def get_project(self, project_id: str) -> ProjectRecord:
        cursor = self._conn.cursor()

        try:
            cursor.execute("""
                SELECT
                    p.project_id,
                    p.slug,
                    t.slug,
                    o.slug,
                    b.bucket_id,
                    b.provider,
                    b.bucket_name,
                    b.region,
                    b.endpoint,
                    b.encrypted_access_key,
                    b.encrypted_secret_key
                FROM projects p
                JOIN teams t ON p.team_id = t.team_id
                JOIN organizations o ON t.organization_id = o.organization_id
                LEFT JOIN buckets b ON p.bucket_id = b.bucket_id
                WHERE p.project_id = %s
            """, (project_id,))

            row = cursor.fetchone()
        finally:
            cursor.close()

        if not row:
            raise ProjectNotFound(f"Project {project_id} not found")

        (
            pid, project_slug, team_slug, org_slug,
            bucket_id, provider, bucket_name, region, endpoint,
            encrypted_access_key, encrypted_secret_key,
        ) = row

        credential = None
        if bucket_id:
            credential = ProviderCredential(
                owner_id=bucket_id,
                provider_type=ProviderType(provider),
                bucket_name=bucket_name,
                encrypted_access_key=encrypted_access_key,
                encrypted_secret_key=encrypted_secret_key,
                region=region,
                endpoint=endpoint,
            )

        return ProjectRecord(
            project_id=pid,
            context=ProjectContext(
                organization_slug=org_slug,
                team_slug=team_slug,
                project_slug=project_slug,
            ),
            credential=credential,
        )
