from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, time as dt_time, timezone


class HealthCheckError(Exception):
    pass


class ConfigurationError(HealthCheckError):
    """
    Setup failure (bad target identifier, client cannot be built, catalog cannot be listed).

    Distinct from a target being unhealthy: callers must not record a Result for the cycle.
    """


class NotificationError(HealthCheckError):
    pass


class Status(str, enum.Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


class SeverityMode(str, enum.Enum):
    DOWN = "down"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class ProbeOutcome:
    ok: bool
    reason: str = ""

    @classmethod
    def success(cls) -> ProbeOutcome:
        return cls(ok=True)

    @classmethod
    def failure(cls, reason: str) -> ProbeOutcome:
        return cls(ok=False, reason=str(reason or "unknown failure"))


@dataclass(frozen=True)
class Attempt:
    latency: timedelta | None = None
    error: str = ""

    @property
    def failed(self) -> bool:
        return bool(self.error)


Attempts = list[Attempt]


@dataclass(frozen=True)
class MaintenanceWindow:
    start: dt_time
    duration: timedelta
    timezone: str | None = None


@dataclass(frozen=True)
class Policy:
    attempts: int = 1
    retries: int = 0
    attempt_spacing: timedelta = timedelta(0)
    retry_spacing: timedelta = timedelta(0)
    latency_threshold: timedelta = timedelta(0)
    maintenance_windows: tuple[MaintenanceWindow, ...] = ()
    severity_mode: SeverityMode = SeverityMode.DOWN

    def normalized(self) -> Policy:
        return Policy(
            attempts=max(1, int(self.attempts)),
            retries=max(0, int(self.retries)),
            attempt_spacing=self.attempt_spacing,
            retry_spacing=self.retry_spacing,
            latency_threshold=self.latency_threshold,
            maintenance_windows=tuple(self.maintenance_windows),
            severity_mode=SeverityMode(self.severity_mode),
        )


def timestamp() -> int:
    """Unix timestamp in nanoseconds, used to stamp Results."""
    return time.time_ns()


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class Result:
    title: str
    endpoint: str
    timestamp: int
    attempts: tuple[Attempt, ...] = ()
    threshold_latency: timedelta = timedelta(0)
    notice: str = ""
    status: Status | None = None

    @property
    def healthy(self) -> bool:
        return self.status is Status.HEALTHY

    @property
    def degraded(self) -> bool:
        return self.status is Status.DEGRADED

    @property
    def down(self) -> bool:
        return self.status is Status.DOWN

    @property
    def errors(self) -> list[str]:
        return [a.error for a in self.attempts if a.error]


@dataclass
class CheckCycleReport:
    results: list[Result] = field(default_factory=list)
    setup_errors: dict[str, str] = field(default_factory=dict)
