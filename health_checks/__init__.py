"""Endpoint and backup health checks with debounced Slack alerts."""

from health_checks.models import Attempt, Policy, Result, SeverityMode, Status

__all__ = [
    "Attempt",
    "Policy",
    "Result",
    "SeverityMode",
    "Status",
]
