from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class FetcherSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Source: either the site root (llms.txt is appended) or the full URL.
    public_url: str = ""
    source_url: Optional[str] = None

    output_dir: str = "public"
    output_file: str = "llms.txt"
    # Defaults to <output_dir>/.<output_file>.meta.json
    metadata_path: Optional[str] = None

    user_agent: str = "llms-fetcher/0.1"
    timeout_ms: int = Field(default=20000, gt=0)
    max_redirects: int = Field(default=5, ge=0)

    # 0 revalidates on every call. Negative or non-finite values are treated as 0.
    ttl_hours: float = 0.0


class ScheduleSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    run_at: str = "02:00"
    # When > 0 takes precedence over run_at.
    interval_hours: float = 0.0


class FileRotationSettings(BaseModel):
    """Daily rotation, as done by TimedRotatingFileHandler(when="midnight")."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    backup_count: int = Field(default=7, ge=0)


class FileLoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Empty disables file logging.
    path: str = ""
    rotation: FileRotationSettings = Field(default_factory=FileRotationSettings)


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    level: str = "INFO"
    file: FileLoggingSettings = Field(default_factory=FileLoggingSettings)


class AppConfig(BaseModel):
    """Effective runtime configuration after applying all precedence rules."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    fetcher: FetcherSettings = Field(default_factory=FetcherSettings)
    schedule: ScheduleSettings = Field(default_factory=ScheduleSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@dataclass(frozen=True, slots=True)
class ConfigLoadRequest:
    """Where the loader reads configuration from. A missing YAML file is not an error."""

    yaml_path: str = "llms-fetcher.yaml"
    env_prefix: str = "LLMS__"
    dotenv_path: Optional[str] = ".env"
