from __future__ import annotations

import dataclasses
import logging
import os
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Iterable

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from health_checks.durations import format_duration
from health_checks.models import MaintenanceWindow, Policy, Result, SeverityMode, Status
from health_checks.stats import compute_stats


LOGGER = logging.getLogger(__name__)

FALLBACK_TIMEZONE = "Europe/Paris"


def default_timezone_name() -> str:
    return (os.getenv("TZ") or "").strip() or FALLBACK_TIMEZONE


def _load_timezone(name: str | None) -> tzinfo:
    cleaned = (name or "").strip() or default_timezone_name()
    if cleaned.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(cleaned)
    except (ZoneInfoNotFoundError, ValueError):
        LOGGER.warning("Timezone not found; falling back to UTC tz=%s", cleaned)
        return timezone.utc


def window_bounds(window: MaintenanceWindow, now: datetime) -> tuple[datetime, datetime]:
    """
    Anchor a daily window to the calendar day of `now` in the window's timezone.

    The window recurs every day. It is not carried over midnight: a window
    starting 23:00 for 2h only covers 23:00-24:00 of the current local day and
    00:00-01:00 of the next day is not covered.
    """
    tz = _load_timezone(window.timezone)
    local_now = now.astimezone(tz)
    start = datetime.combine(local_now.date(), window.start, tzinfo=tz)
    return start, start + window.duration


def in_maintenance(windows: Iterable[MaintenanceWindow], now: datetime) -> bool:
    for window in windows:
        if window.duration <= timedelta(0):
            continue
        start, end = window_bounds(window, now)
        if start <= now.astimezone(start.tzinfo) < end:
            return True
    return False


def evaluate(result: Result, policy: Policy, *, now: datetime | None = None) -> Result:
    """
    Conclude the verdict of a check from its attempts.

    Precedence: maintenance window, then any failed attempt (down, or degraded
    when the policy says so), then median latency above the threshold, then healthy.
    """
    now = now or datetime.now(tz=timezone.utc)
    result = dataclasses.replace(result, threshold_latency=policy.latency_threshold)

    if policy.maintenance_windows and in_maintenance(policy.maintenance_windows, now):
        LOGGER.info("Inside maintenance window; forcing healthy title=%s", result.title)
        return dataclasses.replace(result, status=Status.HEALTHY)

    if any(a.failed for a in result.attempts):
        if policy.severity_mode == SeverityMode.DEGRADED:
            return dataclasses.replace(result, status=Status.DEGRADED)
        return dataclasses.replace(result, status=Status.DOWN)

    if policy.latency_threshold > timedelta(0):
        stats = compute_stats(result.attempts)
        if stats.median is not None and stats.median > policy.latency_threshold:
            notice = f"median round trip time exceeded threshold ({format_duration(policy.latency_threshold)})"
            return dataclasses.replace(result, notice=notice, status=Status.DEGRADED)

    return dataclasses.replace(result, status=Status.HEALTHY)


def evaluate_backup(result: Result) -> Result:
    """Backup checks only know down or healthy."""
    if any(a.failed for a in result.attempts):
        return dataclasses.replace(result, status=Status.DOWN)
    return dataclasses.replace(result, status=Status.HEALTHY)
