"""Configuration management for Foreman MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class ForemanSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    data_dir: Path = Field(default=Path("./storage/data"), validation_alias="FOREMAN_DATA_DIR")
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    agent_catalog_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("agents"),), validation_alias="FOREMAN_AGENT_PATHS"
    )
    log_level: str = Field(default="INFO", validation_alias="FOREMAN_LOG_LEVEL")

    openclaw_path: str | None = Field(default=None, validation_alias="OPENCLAW_PATH")
    subagent_timeout: float = Field(default=30.0, validation_alias="FOREMAN_SUBAGENT_TIMEOUT")

    opencode_url: str = Field(default="http://127.0.0.1:4096", validation_alias="OPENCODE_URL")
    opencode_timeout: float = Field(default=120.0, validation_alias="FOREMAN_OPENCODE_TIMEOUT")

    gemini_path: str | None = Field(default=None, validation_alias="GEMINI_PATH")
    gemini_cwd: Path | None = Field(default=None, validation_alias="FOREMAN_GEMINI_CWD")
    cli_settle_timeout: float = Field(default=2.0, validation_alias="FOREMAN_CLI_SETTLE_TIMEOUT")
    cli_poll_interval: float = Field(default=0.25, validation_alias="FOREMAN_CLI_POLL_INTERVAL")

    work_dir: Path = Field(default=Path("."), validation_alias="FOREMAN_WORK_DIR")
    stale_work_hours: int = Field(default=24, validation_alias="FOREMAN_STALE_WORK_HOURS")
    refresh_interval: float = Field(default=30.0, validation_alias="FOREMAN_REFRESH_INTERVAL")
    cleanup_interval: float = Field(default=300.0, validation_alias="FOREMAN_CLEANUP_INTERVAL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "FOREMAN_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("agent_catalog_paths", mode="before")
    @classmethod
    def _parse_catalog_paths(cls, value):
        if value is None or value == "":
            return (Path("agents"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("agents"),)
        raise TypeError("FOREMAN_AGENT_PATHS must be a list of paths or a path-separated string")

    @field_validator(
        "cli_settle_timeout",
        "cli_poll_interval",
        "subagent_timeout",
        "opencode_timeout",
        "refresh_interval",
        "cleanup_interval",
    )
    @classmethod
    def _validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Timeouts and poll intervals must be > 0")
        return value

    @field_validator("stale_work_hours")
    @classmethod
    def _validate_stale_hours(cls, value: int) -> int:
        if value < 1:
            raise ValueError("FOREMAN_STALE_WORK_HOURS must be >= 1")
        return value

    @property
    def work_tracker_path(self) -> Path:
        return self.data_dir / "work_progress.json"

    @property
    def preferences_path(self) -> Path:
        return self.data_dir / "agent_preferences.json"


@lru_cache(maxsize=1)
def get_settings() -> ForemanSettings:
    """Return cached settings instance."""

    settings = ForemanSettings()
    settings.data_dir = settings.data_dir.expanduser().resolve()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    settings.work_dir = settings.work_dir.expanduser().resolve()
    settings.agent_catalog_paths = tuple(
        path.expanduser().resolve() for path in settings.agent_catalog_paths
    )
    return settings


__all__ = ["ForemanSettings", "get_settings"]
