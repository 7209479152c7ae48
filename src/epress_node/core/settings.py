"""Application settings and configuration.

This module defines all configuration options for the epress node application.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    This class defines all configuration options for an epress node.
    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="epress node", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")

    # Security and authentication
    secret_key: str = Field(alias="SECRET_KEY")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./epress.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Session (node owner) JWT settings
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    session_token_expire_minutes: int = Field(
        default=60 * 24,
        alias="SESSION_TOKEN_EXPIRE_MINUTES",
    )
    session_cookie_name: str = Field(default="authToken", alias="SESSION_COOKIE_NAME")
    session_cookie_default_seconds: int = Field(
        default=60 * 60 * 24,
        alias="SESSION_COOKIE_DEFAULT_SECONDS",
    )
    session_cookie_secure: bool = Field(default=False, alias="SESSION_COOKIE_SECURE")
    login_nonce_ttl_seconds: int = Field(default=600, alias="LOGIN_NONCE_TTL_SECONDS")

    # Comment confirmation channels
    comment_token_ttl_seconds: int = Field(
        default=60 * 60 * 24,
        alias="COMMENT_TOKEN_TTL_SECONDS",
    )
    comment_signature_validity_seconds: int = Field(
        default=600,
        alias="COMMENT_SIGNATURE_VALIDITY_SECONDS",
    )

    # Accepted clock skew for connection/install statements
    statement_timestamp_window_seconds: int = Field(
        default=3600,
        alias="STATEMENT_TIMESTAMP_WINDOW_SECONDS",
    )

    # EIP-712 domain shared by every typed statement
    statement_domain_name: str = Field(default="epress world", alias="STATEMENT_DOMAIN_NAME")
    statement_domain_version: str = Field(default="1", alias="STATEMENT_DOMAIN_VERSION")
    statement_chain_id: int = Field(default=1, alias="STATEMENT_CHAIN_ID")

    # Content storage
    upload_dir: str = Field(default="./data/uploads", alias="UPLOAD_DIR")
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, alias="MAX_UPLOAD_BYTES")

    # Federation (node to node) HTTP
    federation_http_timeout_seconds: float = Field(
        default=10.0,
        alias="FEDERATION_HTTP_TIMEOUT_SECONDS",
    )

    # Outbound mail
    mail_from: str | None = Field(default=None, alias="MAIL_FROM")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
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
        url = self.database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def statement_domain(self) -> dict[str, object]:
        """Return the EIP-712 domain separator fields."""
        return {
            "name": self.statement_domain_name,
            "version": self.statement_domain_version,
            "chainId": self.statement_chain_id,
        }


settings = Settings()  # type: ignore[call-arg]
