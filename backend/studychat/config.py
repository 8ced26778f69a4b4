"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "StudyChat"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False

    # Database
    # If database_url_override is set (e.g., a hosted Postgres with SSL), it takes precedence
    database_url_override: str | None = None
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "studychat"
    postgres_password: str = ""
    postgres_db: str = "studychat"
    database_pool_size: int = 5
    database_max_overflow: int = 10

    @computed_field
    @property
    def database_url(self) -> str:
        """Get async database URL. Uses override if provided, otherwise constructs from parts."""
        if self.database_url_override:
            url = self.database_url_override
            if url.startswith("postgresql://"):
                url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
            elif url.startswith("postgres://"):
                url = url.replace("postgres://", "postgresql+asyncpg://", 1)
            # asyncpg doesn't accept query params via URL, SSL goes through connect_args
            if "?" in url:
                url = url.split("?")[0]
            return url
        return f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    @computed_field
    @property
    def database_requires_ssl(self) -> bool:
        """Check if the database connection requires SSL."""
        if self.database_url_override:
            return "sslmode=require" in self.database_url_override or "ssl=require" in self.database_url_override
        return False

    @computed_field
    @property
    def database_url_sync(self) -> str:
        """Get sync database URL (for Alembic)."""
        if self.database_url_override:
            url = self.database_url_override
            if url.startswith("postgres://"):
                url = url.replace("postgres://", "postgresql://", 1)
            elif url.startswith("postgresql+asyncpg://"):
                url = url.replace("postgresql+asyncpg://", "postgresql://", 1)
            return url
        return f"postgresql://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    # Auth / JWT (tokens are issued by the external auth service, we only verify them)
    jwt_secret_key: str | None = None
    jwt_algorithm: str = "HS256"
    jwt_audience: str | None = "authenticated"

    # CORS
    cors_origins: list[str] = ["*"]

    # AI gateway (OpenAI-compatible chat completions endpoint)
    ai_gateway_url: str = "https://ai.gateway.lovable.dev/v1/chat/completions"
    ai_gateway_api_key: str | None = None  # Checked at startup, see GatewayRelay
    ai_gateway_timeout_seconds: float = 120.0

    # LLM configuration
    llm_text_model: str = "google/gemini-2.5-flash"
    llm_vision_model: str = "google/gemini-2.5-pro"
    llm_text_temperature: float = 0.7
    llm_vision_temperature: float = 0.2
    llm_max_tokens: int = 2000

    # Context
    context_timezone: str = "Asia/Tehran"
    materials_context_limit: int = 100

    # Upper bound for undecoded stream text held while waiting for a line to complete
    stream_buffer_max_chars: int = 256 * 1024

    # Usage limits (admins are exempt)
    daily_message_limit: int = 10

    # S3-compatible object storage
    storage_access_key_id: str | None = None
    storage_secret_access_key: str | None = None
    storage_region: str = "us-east-1"
    storage_endpoint_url: str | None = None  # e.g. https://<project>.supabase.co/storage/v1/s3
    storage_public_base_url: str = "http://localhost:9000"  # public objects live at <base>/<bucket>/<key>
    materials_bucket: str = "educational-files"
    chat_uploads_bucket: str = "chat-images"
    max_upload_size_bytes: int = 20 * 1024 * 1024  # 20MB
    upload_url_expiration_seconds: int = 300


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def sanitize_error(error: Exception, *, generic_message: str = "An internal error occurred.") -> str:
    """
    Return a user-safe error message.

    In development, returns the full exception string for debugging.
    In staging/production, returns a generic message to avoid leaking internals.
    """
    settings = get_settings()
    if settings.environment == "development":
        return str(error)
    return generic_message
