"""Application configuration using pydantic-settings."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Backend selection
    backend: Literal["supabase", "local"] = "local"

    # Hosted backend (Supabase)
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    request_timeout: float = 10.0
    realtime_poll_interval: float = 5.0

    # Local backend
    database_url: str = "sqlite+aiosqlite:///./jobtracker.db"

    # Analytics
    timeline_months: int = 6
    timeline_fill_gaps: bool = False

    # Application
    app_name: str = "JobTracker"
    debug: bool = False
    log_level: str = "INFO"

    # CORS
    frontend_cors_origin: str = "http://localhost:5173"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def uses_hosted_backend(self) -> bool:
        return self.backend == "supabase"


# Global settings instance
settings = Settings()
