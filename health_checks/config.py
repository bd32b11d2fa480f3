"""Configuration for the health check runner (YAML file validated with pydantic)."""

from __future__ import annotations

import os
from datetime import time as dt_time, timedelta
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from health_checks.backup_probes import DEFAULT_MIN_AGE, DEFAULT_MIN_SIZE, DEFAULT_REGION
from health_checks.durations import parse_duration
from health_checks.models import ConfigurationError, MaintenanceWindow, Policy, SeverityMode


class MaintenanceWindowSettings(BaseModel):
    """Daily window during which failures are ignored."""
    start: dt_time = Field(description="Time of day the window opens (HH:MM[:SS])")
    duration: timedelta = Field(description="Window length, e.g. '30m'")
    timezone: Optional[str] = Field(default=None, description="IANA zone; defaults to $TZ or Europe/Paris")

    @field_validator("start", mode="before")
    @classmethod
    def _start(cls, v: Any) -> Any:
        # YAML reads an unquoted 03:00 as the base-60 integer 180.
        if isinstance(v, (int, float)):
            raise ValueError(f"time of day must be a quoted 'HH:MM' string, got {v!r}")
        return v

    @field_validator("duration", mode="before")
    @classmethod
    def _duration(cls, v: Any) -> timedelta:
        return parse_duration(v)

    def to_window(self) -> MaintenanceWindow:
        return MaintenanceWindow(start=self.start, duration=self.duration, timezone=self.timezone)


class HttpCheckSettings(BaseModel):
    """One HTTP endpoint to probe."""
    name: str
    url: str
    up_status: int = Field(default=200, description="Expected HTTP status code")
    must_contain: str = ""
    must_not_contain: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    basic_auth: Optional[dict[str, str]] = None

    attempts: int = 1
    retries: int = 0
    attempt_spacing: timedelta = timedelta(0)
    retry_spacing: timedelta = timedelta(0)
    latency_threshold: timedelta = timedelta(0)
    severity_mode: SeverityMode = SeverityMode.DOWN
    maintenance_windows: list[MaintenanceWindowSettings] = Field(default_factory=list)

    timeout_seconds: float = 10.0
    insecure_skip_verify: bool = False
    proxy: Optional[str] = None

    @field_validator("attempt_spacing", "retry_spacing", "latency_threshold", mode="before")
    @classmethod
    def _durations(cls, v: Any) -> timedelta:
        return parse_duration(v)

    def to_policy(self) -> Policy:
        return Policy(
            attempts=self.attempts,
            retries=self.retries,
            attempt_spacing=self.attempt_spacing,
            retry_spacing=self.retry_spacing,
            latency_threshold=self.latency_threshold,
            maintenance_windows=tuple(w.to_window() for w in self.maintenance_windows),
            severity_mode=self.severity_mode,
        ).normalized()


class BackupCheckSettings(BaseModel):
    """One backup catalog: bucket objects, database snapshots or machine images."""
    name: str
    kind: Literal["bucket", "snapshot", "image"]
    region: str = DEFAULT_REGION
    bucket: Optional[str] = None
    prefix: str = ""
    instance: Optional[str] = None
    image_prefix: Optional[str] = None
    min_age_threshold: timedelta = DEFAULT_MIN_AGE
    min_size_threshold: int = DEFAULT_MIN_SIZE

    @field_validator("min_age_threshold", mode="before")
    @classmethod
    def _min_age(cls, v: Any) -> timedelta:
        return parse_duration(v)

    def target(self) -> str:
        if self.kind == "bucket":
            if not self.bucket:
                raise ConfigurationError(f"{self.name}: bucket checks need 'bucket'")
            return f"s3://{self.bucket}/{self.prefix}"
        if self.kind == "snapshot":
            if not self.instance:
                raise ConfigurationError(f"{self.name}: snapshot checks need 'instance'")
            return f"rds:{self.instance}"
        if not self.image_prefix:
            raise ConfigurationError(f"{self.name}: image checks need 'image_prefix'")
        return f"ami:{self.image_prefix}*"


class SlackSettings(BaseModel):
    webhook_url: str = ""
    username: str = ""
    channel: str = ""


class AppConfig(BaseModel):
    interval_seconds: int = Field(default=60, description="Seconds between check cycles")
    check_concurrency: int = Field(default=10, description="Targets checked in parallel")
    slack: Optional[SlackSettings] = None
    http_checks: list[HttpCheckSettings] = Field(default_factory=list)
    backup_checks: list[BackupCheckSettings] = Field(default_factory=list)


def load_config(path: Path) -> AppConfig:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigurationError(f"Cannot read config {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError("Config YAML must be a mapping")

    env_webhook = os.getenv("SLACK_WEBHOOK_URL")
    if env_webhook:
        slack = data.get("slack") if isinstance(data.get("slack"), dict) else {}
        data["slack"] = {**slack, "webhook_url": env_webhook}

    try:
        config = AppConfig(**data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid config {path}: {exc}") from exc

    names = [c.name for c in config.http_checks] + [c.name for c in config.backup_checks]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ConfigurationError(f"Check names must be unique: {', '.join(dupes)}")
    return config
