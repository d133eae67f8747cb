"""
Central configuration using Pydantic BaseSettings.

Validates all env vars on first use (fail-fast).

Usage:
    from config.settings import get_settings

    settings = get_settings()
    print(settings.tracker.poll_interval_seconds)

Lazy initialization: get_settings() creates the singleton on first call.
Tests can reset via get_settings.cache_clear().
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings


# =============================================================================
# Nested Settings Groups
# =============================================================================


class ControlPlaneSettings(BaseSettings):
    """Control-plane API endpoint and credentials."""

    model_config = {"env_prefix": "CONTROL_PLANE_", "extra": "ignore"}

    url: str = "http://localhost:7007/api/proxy/aegis"
    api_token: SecretStr = SecretStr("")
    timeout_seconds: float = 30.0
    require_auth: bool = True

    # Cluster provisioning endpoints
    submit_path: str = "/api/v1/clusters"
    status_path: str = "/api/v1/clusters/jobs/{job_id}/status"

    @field_validator("status_path")
    @classmethod
    def _status_path_has_job_id(cls, value: str) -> str:
        if "{job_id}" not in value:
            raise ValueError("status_path must contain a {job_id} placeholder")
        return value


class TrackerSettings(BaseSettings):
    """Polling cadence and job persistence."""

    model_config = {"env_prefix": "TRACKER_", "extra": "ignore"}

    poll_interval_seconds: float = 5.0
    max_consecutive_failures: int = 60  # 0 disables the budget

    store_backend: Literal["json", "sqlite", "memory"] = "json"
    store_path: Path = Path("data/provisioning_job.json")
    store_key: str = "aegis.clusterJobState"

    @field_validator("poll_interval_seconds")
    @classmethod
    def _positive_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("poll_interval_seconds must be greater than 0")
        return value

    @field_validator("max_consecutive_failures")
    @classmethod
    def _non_negative_budget(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max_consecutive_failures must be >= 0")
        return value


# =============================================================================
# Root Settings
# =============================================================================


class AppSettings(BaseSettings):
    """Root application settings composing all sub-settings."""

    model_config = {"env_prefix": "", "extra": "ignore", "env_file": ".env", "env_file_encoding": "utf-8"}

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Optional[str] = None

    # Nested groups (initialized separately to support env_prefix)
    control_plane: ControlPlaneSettings = None  # type: ignore[assignment]
    tracker: TrackerSettings = None  # type: ignore[assignment]

    @model_validator(mode="before")
    @classmethod
    def _init_nested(cls, values):
        """Initialize nested settings from environment."""
        if values.get("control_plane") is None:
            values["control_plane"] = ControlPlaneSettings()
        if values.get("tracker") is None:
            values["tracker"] = TrackerSettings()
        return values


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """
    Get the application settings singleton.

    Lazy-initialized on first call. Validates all env vars (fail-fast).
    Tests can reset via: get_settings.cache_clear()
    """
    return AppSettings()
