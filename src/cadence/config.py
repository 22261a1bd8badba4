"""Configuration management for Cadence."""

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CADENCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Runtime environment (development, staging, production)",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Sprint planning
    overcommit_factor: float = Field(
        default=1.0,
        ge=0.0,
        le=3.0,
        description="Multiplier applied to sprint capacity before rejecting new scope",
    )
    burndown_deviation_threshold: float = Field(
        default=0.15,
        ge=0.0,
        le=1.0,
        description="Fraction of committed points the burndown may lag the ideal line",
    )
    blocked_task_risk_threshold: int = Field(
        default=1,
        ge=1,
        description="Number of blocked sprint tasks that counts as a risk factor",
    )

    # Task hierarchy
    max_parent_depth: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Maximum depth of the parent/child task tree",
    )

    # Derived views
    critical_path_refresh_seconds: int = Field(
        default=300,
        ge=0,
        description="How long a cached critical path may be served before recomputing",
    )

    # Listing
    default_page_size: int = Field(default=50, ge=1, description="Default task page size")
    max_page_size: int = Field(default=500, ge=1, description="Largest accepted task page size")

    @model_validator(mode="after")
    def validate_page_sizes(self) -> "Settings":
        """Keep the default page size within the allowed maximum."""
        if self.default_page_size > self.max_page_size:
            raise ValueError(
                f"default_page_size ({self.default_page_size}) cannot exceed "
                f"max_page_size ({self.max_page_size})"
            )
        return self


settings = Settings()
