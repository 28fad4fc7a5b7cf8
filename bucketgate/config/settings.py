"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables with sensible defaults.
Using Pydantic's BaseSettings means we get:
- Type validation at startup (fail fast if config is wrong)
- Documentation of what's required vs optional
- Easy testing with different configurations

Only this module reads the environment. The core receives explicit
values (the vault key, a RateLimitPolicy) through its constructors.

Mock modes enable local development without external services.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.limits.models import LimitKind, RateLimitPolicy


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like api_keys), use comma-separated values in env.
    """

    # API Configuration
    api_title: str = "Bucketgate Storage Gateway"
    api_version: str = "v1"
    environment: str = Field(
        default="development",
        description="Deployment environment name. 'production' forbids rate limit bypass."
    )
    api_keys: str = Field(
        default="",
        description="Comma-separated key:project_id pairs. Each key may only act on its project."
    )
    admin_api_keys: str = Field(
        default="",
        description="Comma-separated API keys allowed to reset rate limits."
    )

    # Credential vault
    credentials_encryption_key: str = Field(
        default="",
        description="Vault key, 'base64:' followed by 32 base64-encoded bytes."
    )

    # Rate limiting
    rate_limit_uploads_per_window: int = Field(
        default=100,
        ge=0,
        description="Upload inits a project may start per window."
    )
    rate_limit_transforms_per_window: int = Field(
        default=500,
        ge=0,
        description="Transforms a project may start per window."
    )
    rate_limit_window_seconds: int = Field(
        default=60,
        gt=0,
        description="Length of a fixed rate limit window."
    )
    rate_limit_bypass: bool = Field(
        default=False,
        description="Admit every request. Development/test only; refused in production."
    )
    rate_limit_fail_open: bool = Field(
        default=False,
        description="Admit requests when the shared rate limit store is unavailable."
    )

    # Uploads
    upload_url_expiry_seconds: int = Field(
        default=900,
        gt=0,
        description="Lifetime of signed upload URLs and their sessions."
    )
    storage_operation_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Upper bound for a single bucket operation (list/get/put/delete)."
    )
    upload_verify_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Upper bound for confirm-time object verification."
    )

    # Snowflake Configuration
    snowflake_account: str = Field(default="", description="Snowflake account identifier")
    snowflake_user: str = Field(default="", description="Snowflake service account username")
    snowflake_password: str = Field(default="", description="Snowflake service account password")
    snowflake_private_key_path: Optional[str] = Field(
        default=None,
        description="Path to RSA private key file for key-pair authentication"
    )
    snowflake_private_key_base64: Optional[str] = Field(
        default=None,
        description="Base64-encoded private key (for deployment, alternative to file path)"
    )
    snowflake_database: str = Field(default="BUCKETGATE", description="Snowflake database name")
    snowflake_schema: str = Field(default="GATEWAY", description="Snowflake schema name")
    snowflake_warehouse: str = Field(default="COMPUTE_WH", description="Snowflake warehouse")
    snowflake_role: Optional[str] = Field(default=None, description="Snowflake role to use (optional)")
    snowflake_mock_mode: bool = Field(
        default=False,
        description="Use in-memory repositories instead of Snowflake. Enables local dev without DB."
    )

    # Object storage
    storage_mock_mode: bool = Field(
        default=False,
        description="Use in-memory buckets instead of S3/R2. Enables local dev without object storage."
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins. Use * for development only."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def _refuse_bypass_in_production(self) -> "Settings":
        if self.rate_limit_bypass and self.is_production:
            raise ValueError("RATE_LIMIT_BYPASS cannot be enabled in production")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @property
    def api_key_projects(self) -> dict[str, str]:
        """Parse key:project_id pairs into a mapping."""
        mapping = {}
        for pair in self.api_keys.split(","):
            key, sep, project_id = pair.strip().partition(":")
            if sep and key.strip() and project_id.strip():
                mapping[key.strip()] = project_id.strip()
        return mapping

    @property
    def admin_api_keys_list(self) -> list[str]:
        """Parse comma-separated admin keys into a list."""
        return [key.strip() for key in self.admin_api_keys.split(",") if key.strip()]

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def rate_limit_policy(self) -> RateLimitPolicy:
        """Policy object injected into the rate limiter."""
        return RateLimitPolicy(
            limits={
                LimitKind.UPLOADS: self.rate_limit_uploads_per_window,
                LimitKind.TRANSFORMS: self.rate_limit_transforms_per_window,
            },
            window_seconds=self.rate_limit_window_seconds,
            bypass=self.rate_limit_bypass,
        )

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode settings.

        Returns list of missing required fields.
        This is separate from Pydantic validation because requirements
        depend on whether we're in mock mode.
        """
        missing = []

        if not self.credentials_encryption_key:
            missing.append("CREDENTIALS_ENCRYPTION_KEY")

        if not self.api_key_projects:
            missing.append("API_KEYS")

        if not self.snowflake_mock_mode:
            if not self.snowflake_account:
                missing.append("SNOWFLAKE_ACCOUNT")
            if not self.snowflake_user:
                missing.append("SNOWFLAKE_USER")
            if not (
                self.snowflake_password
                or self.snowflake_private_key_path
                or self.snowflake_private_key_base64
            ):
                missing.append("SNOWFLAKE_PASSWORD or SNOWFLAKE_PRIVATE_KEY_PATH")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache means we only load settings once per process.
    For tests, call get_settings.cache_clear() or override the dependency.
    """
    return Settings()
