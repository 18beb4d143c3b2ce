from __future__ import annotations

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """
    Application-level settings for the FastAPI service.

    This is separate from mrp_engine.db.config.Settings, which focuses on the database layer,
    and from MrpSettings, which tunes the planning engine itself.
    """

    # FastAPI metadata
    APP_NAME: str = Field(default="MRP Planning Engine")
    APP_DESCRIPTION: str = Field(
        default=(
            "Material Requirements Planning engine: low-level codes, BOM explosion, "
            "requirements netting and chunked run orchestration."
        )
    )
    APP_VERSION: str = Field(default="0.1.0")

    # CORS
    CORS_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"],
        description="Comma-separated list or JSON array of allowed origins. Default: *",
    )
    CORS_ALLOW_CREDENTIALS: bool = Field(default=True)
    CORS_ALLOW_METHODS: List[str] = Field(default_factory=lambda: ["*"])
    CORS_ALLOW_HEADERS: List[str] = Field(default_factory=lambda: ["*"])

    # Startup behavior
    RUN_MIGRATIONS_ON_STARTUP: bool = Field(
        default=True,
        description="If true, run Alembic migrations (upgrade head) at app startup.",
    )
    AUTO_SEED: bool = Field(
        default=False,
        description="If true, seed the demo planning dataset at app startup.",
    )

    # Environment label
    ENVIRONMENT: Optional[str] = Field(
        default=None, description="Environment label (dev/test/prod)"
    )

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        """
        Accept both JSON array format and comma-separated formats for CORS origins.
        """
        if v is None:
            return ["*"]
        if isinstance(v, str):
            parts = [p.strip() for p in v.split(",") if p.strip()]
            return parts or ["*"]
        if isinstance(v, list):
            return v or ["*"]
        return ["*"]


class MrpSettings(BaseSettings):
    """
    Planning engine tuning, read from MRP_* environment variables.

    Chunk/retry/timeout values mirror the job limits of the production worker setup:
    a chunk gets 30 minutes and two attempts, a whole run gets one hour.
    """

    # Chunking and worker pool
    CHUNK_SIZE: int = Field(default=100, ge=1, description="Max products per chunk")
    WORKER_CONCURRENCY: int = Field(default=4, ge=1, description="Parallel chunk workers per tier")

    # Timeouts and retries
    CHUNK_TIMEOUT_SECONDS: float = Field(default=1800.0, gt=0)
    CHUNK_MAX_ATTEMPTS: int = Field(default=2, ge=1)
    CHUNK_RETRY_BACKOFF_SECONDS: List[float] = Field(
        default_factory=lambda: [60.0, 300.0],
        description="Sleep before attempt n+1; the last value is reused when attempts exceed the list",
    )
    RUN_TIMEOUT_SECONDS: float = Field(default=3600.0, gt=0)

    # Cache lifetimes
    CACHE_TTL_SECONDS: int = Field(default=14400, ge=1)
    RUN_LOCK_TTL_SECONDS: int = Field(default=10800, ge=1)
    DIRTY_SET_TTL_SECONDS: int = Field(default=86400, ge=1)

    # Calendar
    WORKING_DAYS: List[int] = Field(
        default_factory=lambda: [0, 1, 2, 3, 4],
        description="Standard working weekdays (Monday=0 ... Sunday=6)",
    )
    DEFAULT_WORKING_HOURS: float = Field(default=8.0, ge=0)
    MAX_CALENDAR_SCAN_DAYS: int = Field(default=366, ge=7)

    # Netting
    RESCHEDULE_TOLERANCE_DAYS: int = Field(default=0, ge=0)
    NET_CHANGE_MAX_DIRTY_RATIO: float = Field(
        default=0.2,
        ge=0,
        le=1,
        description="Above this share of dirty products a net-change run plans every product",
    )
    WARNING_EXAMPLES_LIMIT: int = Field(default=3, ge=0)

    model_config = SettingsConfigDict(
        env_prefix="MRP_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("WORKING_DAYS", mode="before")
    @classmethod
    def _parse_working_days(cls, v):
        """Accept '0,1,2,3,4' as well as a JSON array."""
        if isinstance(v, str):
            return [int(p) for p in v.split(",") if p.strip()]
        return v

    @field_validator("WORKING_DAYS")
    @classmethod
    def _check_weekdays(cls, v: List[int]) -> List[int]:
        bad = [d for d in v if d < 0 or d > 6]
        if bad:
            raise ValueError(f"WORKING_DAYS entries must be between 0 and 6, got {bad}")
        return sorted(set(v))

    def backoff_for(self, attempt: int) -> float:
        """Return the sleep before retrying after the given (1-based) failed attempt."""
        if not self.CHUNK_RETRY_BACKOFF_SECONDS:
            return 0.0
        idx = min(attempt - 1, len(self.CHUNK_RETRY_BACKOFF_SECONDS) - 1)
        return float(self.CHUNK_RETRY_BACKOFF_SECONDS[idx])


# PUBLIC_INTERFACE
def get_app_settings() -> AppSettings:
    """
    Return a new AppSettings instance populated from environment variables.
    """
    return AppSettings()


# PUBLIC_INTERFACE
def get_mrp_settings() -> MrpSettings:
    """Return a new MrpSettings instance populated from MRP_* environment variables."""
    return MrpSettings()
