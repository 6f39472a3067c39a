"""Application configuration."""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    management_api_url: str = "https://api.supabase.com/v1"

    @field_validator("management_api_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Paths are joined as /projects/..., so drop a trailing slash."""
        return v.rstrip("/")

    evidence_dir: str = "evidence"
    app_version: str = "1.0.0"
    log_level: str = "INFO"
    request_timeout_seconds: float = 30.0
    sql_log_max_chars: int = 1000
    cors_origins: list[str] = ["*"]
    port: int = 3001


settings = Settings()
