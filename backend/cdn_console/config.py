from pydantic import ConfigDict, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Database
    database_url: str = "sqlite:///./cdn_console.db"

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"  # "json" in production

    # Public URL used to build invite links
    app_public_url: str = "http://localhost:3000"

    # Object storage (S3-compatible: R2, MinIO, AWS)
    object_storage_enabled: bool = False
    object_storage_endpoint: str | None = None
    object_storage_access_key: str | None = None
    object_storage_secret_key: str | None = None
    object_storage_region: str = "auto"

    # Presigned URL lifetimes
    upload_policy_ttl_seconds: int = 3600
    download_url_ttl_seconds: int = 3600

    # Invite limits
    max_invite_size_bytes: int = 100 * 1024 * 1024  # 100MB
    commit_max_attempts: int = 5

    # Rate Limiting
    invite_rate_limit_requests: int = 60
    invite_rate_limit_window_seconds: int = 600  # 10 minutes
    rate_limit_sweep_interval_minutes: int = 5
    rate_limit_admin: str = "120/minute"

    # Notifications
    upload_webhook_url: str | None = None

    # CORS
    cors_origins: list[str] | str = ["http://localhost:3000", "http://127.0.0.1:3000"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v


settings = Settings()
