from pydantic_settings import BaseSettings
from pydantic import Field
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./clarifind.db",
        env="DATABASE_URL",
    )

    # Auth
    jwt_secret_key: str = Field(default="change-me-in-production", env="JWT_SECRET_KEY")

    # Lab results storage
    lab_results_storage_key: str = Field(
        default="clarifind_lab_results",
        env="LAB_RESULTS_STORAGE_KEY",
    )
    fresh_window_hours: int = Field(default=24, env="FRESH_WINDOW_HOURS")
    seed_demo_data: bool = Field(default=True, env="SEED_DEMO_DATA")

    # File uploads
    max_upload_bytes: int = Field(default=2 * 1024 * 1024, env="MAX_UPLOAD_BYTES")
    allowed_upload_types: list[str] = Field(
        default=["application/pdf", "image/jpeg", "image/jpg", "image/png"],
        env="ALLOWED_UPLOAD_TYPES",
    )

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
