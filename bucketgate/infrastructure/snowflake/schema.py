"""
DDL for the tables the Snowflake repositories read and write.

Applied by scripts/init_schema.py. Counters use NUMBER(38,0) so
bandwidth totals can't overflow.
"""

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS organizations (
        organization_id VARCHAR(36) PRIMARY KEY,
        slug VARCHAR(50) NOT NULL UNIQUE,
        created_at TIMESTAMP_TZ DEFAULT CURRENT_TIMESTAMP()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS teams (
        team_id VARCHAR(36) PRIMARY KEY,
        organization_id VARCHAR(36) NOT NULL REFERENCES organizations(organization_id),
        slug VARCHAR(50) NOT NULL,
        created_at TIMESTAMP_TZ DEFAULT CURRENT_TIMESTAMP()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS buckets (
        bucket_id VARCHAR(36) PRIMARY KEY,
        provider VARCHAR(8) NOT NULL,
        bucket_name VARCHAR(255) NOT NULL,
        region VARCHAR(64),
        endpoint VARCHAR(512),
        encrypted_access_key VARCHAR(1024) NOT NULL,
        encrypted_secret_key VARCHAR(1024) NOT NULL,
        created_at TIMESTAMP_TZ DEFAULT CURRENT_TIMESTAMP()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS projects (
        project_id VARCHAR(36) PRIMARY KEY,
        team_id VARCHAR(36) NOT NULL REFERENCES teams(team_id),
        bucket_id VARCHAR(36) REFERENCES buckets(bucket_id),
        slug VARCHAR(50) NOT NULL,
        created_at TIMESTAMP_TZ DEFAULT CURRENT_TIMESTAMP()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS upload_sessions (
        upload_id VARCHAR(36) PRIMARY KEY,
        project_id VARCHAR(36) NOT NULL,
        tenant_id VARCHAR(64),
        resolved_path VARCHAR(1024) NOT NULL,
        content_type VARCHAR(255),
        status VARCHAR(16) NOT NULL,
        metadata VARIANT,
        api_key_id VARCHAR(64),
        expires_at TIMESTAMP_TZ NOT NULL,
        created_at TIMESTAMP_TZ NOT NULL,
        updated_at TIMESTAMP_TZ DEFAULT CURRENT_TIMESTAMP()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS files (
        file_id VARCHAR(36) PRIMARY KEY,
        project_id VARCHAR(36) NOT NULL,
        tenant_id VARCHAR(64),
        path VARCHAR(1024) NOT NULL,
        filename VARCHAR(512) NOT NULL,
        version VARCHAR(16) NOT NULL,
        size_bytes NUMBER(38, 0) NOT NULL,
        mime_type VARCHAR(255) NOT NULL,
        metadata VARIANT,
        uploaded_at TIMESTAMP_TZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS usage_daily (
        project_id VARCHAR(36) NOT NULL,
        day DATE NOT NULL,
        uploads NUMBER(38, 0) DEFAULT 0,
        transforms NUMBER(38, 0) DEFAULT 0,
        bandwidth_bytes NUMBER(38, 0) DEFAULT 0,
        updated_at TIMESTAMP_TZ DEFAULT CURRENT_TIMESTAMP(),
        PRIMARY KEY (project_id, day)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rate_limit_windows (
        project_id VARCHAR(36) NOT NULL,
        kind VARCHAR(16) NOT NULL,
        window_start TIMESTAMP_TZ NOT NULL,
        request_count NUMBER(38, 0) DEFAULT 0,
        updated_at TIMESTAMP_TZ DEFAULT CURRENT_TIMESTAMP(),
        PRIMARY KEY (project_id, kind)
    )
    """,
]
