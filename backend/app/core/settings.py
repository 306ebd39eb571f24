# backend/app/core/settings.py
"""
MRP Engine - Configuration Management with pydantic-settings

- Loads from environment and root .env
- Validates and normalizes values
- Cached singleton via get_settings()
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Calculate path to .env in project root (4 levels up from this file)
# backend/app/core/settings.py -> <repo>/.env
_ENV_FILE = Path(__file__).resolve().parent.parent.parent.parent / ".env"


class Settings(BaseSettings):
    """
    Application settings with validation.

    Environment variables take precedence over .env file values.
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===================
    # Application Settings
    # ===================
    PROJECT_NAME: str = "MRP Engine"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    ENVIRONMENT: str = Field(default="development", description="Deployment environment")

    # ===================
    # Database Settings
    # ===================
    DB_HOST: str = Field(default="localhost", description="PostgreSQL host")
    DB_PORT: int = Field(default=5432, description="PostgreSQL port")
    DB_NAME: str = Field(default="mrp", description="Database name")
    DB_USER: str = Field(default="postgres", description="Database user")
    DB_PASSWORD: str = Field(default="postgres", description="Database password")
    DATABASE_URL: Optional[str] = Field(
        default=None, description="Full database URL (overrides DB_* settings)"
    )

    @property
    def database_url(self) -> str:
        """Build PostgreSQL database URL from components or use explicit URL."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    # ===================
    # CORS Settings
    # ===================
    ALLOWED_ORIGINS: List[str] = Field(
        default=["http://localhost:5173", "http://127.0.0.1:5173"],
        description="Allowed CORS origins",
    )

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # ===================
    # Redis / Background Jobs
    # ===================
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Redis used for MRP cache, locks and the rq job queue",
    )
    MRP_QUEUE_ENABLED: bool = Field(default=True, description="Dispatch async runs and parallel chunks to rq")
    MRP_QUEUE_NAME: str = "mrp"
    MRP_CHUNK_QUEUE_NAME: str = "mrp-chunks"
    MRP_JOB_TIMEOUT_SECONDS: int = 3600
    MRP_CHUNK_JOB_TIMEOUT_SECONDS: int = 1800

    # ===================
    # Logging
    # ===================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text
    LOG_FILE: Optional[str] = None

    # ===================
    # MRP Cache & Locking
    # ===================
    MRP_CACHE_PREFIX: str = "mrp:"
    MRP_CACHE_TTL_SECONDS: int = 14400  # 4 hours
    # Must exceed the longest run for the largest tenant
    MRP_LOCK_TTL_SECONDS: int = 10800  # 3 hours
    MRP_DIRTY_PRODUCTS_TTL_SECONDS: int = 86400  # 24 hours

    # ===================
    # MRP Processing
    # ===================
    MRP_CHUNK_SIZE: int = Field(default=100, ge=1)
    MRP_PROGRESS_INTERVAL: int = Field(default=10, ge=1)
    MRP_PARALLEL_THRESHOLD: int = 2000
    MRP_ASYNC_PRODUCT_THRESHOLD: int = 5000
    MRP_ASYNC_FILTERED_THRESHOLD: int = 1000
    MRP_INCREMENTAL_MAX_DIRTY_RATIO: float = Field(default=0.20, gt=0, le=1)
    MRP_LLC_MAX_ITERATIONS: int = Field(default=100, ge=1)
    MRP_MAX_EXPLOSION_DEPTH: int = Field(default=10, ge=1)
    MRP_DEFAULT_HORIZON_DAYS: int = Field(default=30, ge=1, le=365)
    MRP_WARNING_EXAMPLES: int = 3

    # ===================
    # Working Calendar
    # ===================
    # Python weekday numbers: Monday=0 ... Sunday=6
    MRP_WORKING_DAYS: List[int] = Field(default=[0, 1, 2, 3, 4])
    MRP_DEFAULT_WORKING_HOURS: float = 8.0

    @field_validator("MRP_WORKING_DAYS", mode="before")
    @classmethod
    def parse_working_days(cls, v):
        if isinstance(v, str):
            v = [d.strip() for d in v.split(",") if d.strip()]
        days = [int(d) for d in v]
        for day in days:
            if day < 0 or day > 6:
                raise ValueError(f"Invalid weekday {day}; expected 0 (Mon) .. 6 (Sun)")
        return days

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Singleton settings loader (cached)."""
    return Settings()


# Convenience alias for backward compatibility with existing code
settings = get_settings()
