"""Central configuration for the wallet identity verification controller."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"


# ============================================================
# Nested Configuration Classes
# ============================================================

class ExchangeSettings(BaseModel):
    """Wallet credential exchange configuration."""
    timeout_seconds: float = Field(120.0, description="Max wait for the platform credential call before aborting")


class QrSettings(BaseModel):
    """QR fallback configuration."""
    watch_enabled: bool = Field(True, description="Poll the backend for out-of-band completion while the QR is shown")
    poll_interval_seconds: float = Field(2.0, description="Delay between session status polls")
    watch_timeout_seconds: float = Field(900.0, description="Give up watching after this long (backend session TTL)")


class Settings(BaseSettings):
    """Environment-driven settings for the controller service."""

    # Backend & API
    backend_api_url: str = Field("http://localhost:8080", description="IDV backend base URL (serves /api/idv/*)")
    backend_timeout_seconds: float = Field(15.0, description="HTTP timeout for backend calls")

    # Controller HTTP Server
    controller_host: str = Field("0.0.0.0", description="Host interface for local FastAPI server")
    controller_port: int = Field(5000, description="Port for FastAPI server")

    # Page bridge
    ui_event_queue_size: int = Field(16, description="Max buffered UI events per page")
    heartbeat_seconds: float = Field(30.0, description="Interval between heartbeat events sent to pages")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # Nested Configuration Objects
    exchange: ExchangeSettings = Field(default_factory=ExchangeSettings, description="Credential exchange settings")
    qr: QrSettings = Field(default_factory=QrSettings, description="QR fallback settings")

    @field_validator("backend_api_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()
