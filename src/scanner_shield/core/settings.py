"""Application settings and configuration.

This module defines all configuration options for the Scanner Shield service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Per-tenant rate limit values below are only the defaults used when a
    tenant's configuration row is created; admins change them per tenant
    through the config endpoint afterwards.
    """

    # Application metadata
    app_name: str = Field(default="Scanner Shield", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")

    # Security and authentication
    secret_key: str = Field(alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    debug: bool = Field(default=False, alias="DEBUG")

    # Database configuration
    database_url: str = Field(default="sqlite:///./scanner_shield.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Tenant resolution
    default_tenant_id: str = Field(default="default", alias="DEFAULT_TENANT_ID")
    trust_proxy_headers: bool = Field(default=False, alias="TRUST_PROXY_HEADERS")

    # Default per-tenant policy (applied when a tenant row is first created)
    default_rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    default_global_limit: int = Field(default=1000, alias="RATE_LIMIT_GLOBAL_LIMIT")
    default_global_window: int = Field(default=3600, alias="RATE_LIMIT_GLOBAL_WINDOW")
    default_per_ip_limit: int = Field(default=100, alias="RATE_LIMIT_PER_IP_LIMIT")
    default_per_ip_window: int = Field(default=60, alias="RATE_LIMIT_PER_IP_WINDOW")
    default_per_user_limit: int = Field(default=1000, alias="RATE_LIMIT_PER_USER_LIMIT")
    default_per_user_window: int = Field(default=3600, alias="RATE_LIMIT_PER_USER_WINDOW")
    default_burst_allowance: int = Field(default=50, alias="RATE_LIMIT_BURST_ALLOWANCE")
    default_ddos_threshold: int = Field(default=1000, alias="DDOS_THRESHOLD")
    default_ddos_window: int = Field(default=60, alias="DDOS_WINDOW")
    default_brute_force_attempts: int = Field(default=5, alias="BRUTE_FORCE_ATTEMPTS")
    default_brute_force_window: int = Field(default=300, alias="BRUTE_FORCE_WINDOW")
    default_block_duration: int = Field(default=3600, alias="BLOCK_DURATION")
    default_auto_block_enabled: bool = Field(default=True, alias="AUTO_BLOCK_ENABLED")

    # DDoS mitigation gate; analyses at or below this confidence only alert
    ddos_mitigation_confidence: float = Field(default=0.7, alias="DDOS_MITIGATION_CONFIDENCE")
    ddos_check_on_request: bool = Field(default=True, alias="DDOS_CHECK_ON_REQUEST")

    # Housekeeping
    cleanup_enabled: bool = Field(default=True, alias="CLEANUP_ENABLED")
    cleanup_interval_seconds: float = Field(default=3600.0, alias="CLEANUP_INTERVAL_SECONDS")
    rate_limit_retention_hours: int = Field(default=24, alias="RATE_LIMIT_RETENTION_HOURS")

    # Paths that bypass the protection middleware entirely
    exempt_paths: list[str] = Field(
        default=["/health", "/docs", "/redoc", "/openapi.json"],
        alias="PROTECTION_EXEMPT_PATHS",
    )

    # CORS configuration for the admin UI
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()  # type: ignore[call-arg]
