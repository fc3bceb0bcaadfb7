"""
Configuration settings for the studyloop study-session engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default="sqlite:///studyloop.db",
        description="SQLAlchemy connection string (sqlite or postgresql)",
    )
    db_timeout_seconds: float = Field(
        default=10.0,
        description="Upper bound for a single repository call (busy/statement/pool timeout)",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    # ========================================
    # API Server
    # ========================================
    api_host: str = Field(
        default="127.0.0.1",
        description="API server host",
    )
    api_port: int = Field(
        default=8100,
        description="API server port",
    )

    # ========================================
    # Learners
    # ========================================
    default_timezone: str = Field(
        default="America/Toronto",
        description="IANA timezone used when a learner has no profile",
    )

    # ========================================
    # Session Composition
    # ========================================
    session_size: int = Field(
        default=10,
        description="Recommended number of items per session",
    )
    max_new_initial: int = Field(
        default=5,
        description="New items admitted on the first build of a session",
    )
    max_new_add_more: int = Field(
        default=8,
        description="New items admitted on an add-more continuation",
    )
    recent_miss_hours: int = Field(
        default=72,
        description="Look-back window for recently missed items",
    )
    recent_miss_limit: int = Field(
        default=6,
        description="Maximum recent-miss candidates per build",
    )
    due_pool_limit: int = Field(
        default=200,
        description="Maximum due candidates fetched per build",
    )
    new_pool_limit: int = Field(
        default=100,
        description="Maximum unseen candidates fetched per build",
    )
    overdue_bonus_days: int = Field(
        default=7,
        description="Days overdue before the urgency bonus applies",
    )

    # ========================================
    # Response Classification
    # ========================================
    quiet_period_seconds: float = Field(
        default=10.0,
        description="Idle time without interaction that forces the worst grade",
    )

    # ========================================
    # Scheduling
    # ========================================
    schedule_jitter: float = Field(
        default=0.10,
        description="Multiplicative interval jitter (0.10 = +/-10%)",
    )
    max_interval_days: int = Field(
        default=365,
        description="Upper clamp for review intervals",
    )

    # ========================================
    # Plan Grading
    # ========================================
    plan_coverage_threshold: float = Field(
        default=0.70,
        description="Checklist coverage needed for a plan to count as correct",
    )
    judge_url: str | None = Field(
        default=None,
        description="Base URL of the external plan judge (None = heuristic only)",
    )
    judge_api_key: str | None = Field(
        default=None,
        description="Bearer token for the plan judge",
    )
    judge_timeout_ms: int = Field(
        default=8000,
        description="Plan judge request timeout in milliseconds",
    )
    judge_retry_attempts: int = Field(
        default=2,
        description="Attempts against the plan judge before falling back",
    )

    # ========================================
    # Submission
    # ========================================
    submit_retry_attempts: int = Field(
        default=3,
        description="Retries when a concurrent submission bumped the schedule version",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
