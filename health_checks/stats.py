from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable

from health_checks.models import Attempt


@dataclass(frozen=True)
class Stats:
    total: int
    failed: int
    min: timedelta | None
    max: timedelta | None
    mean: timedelta | None
    median: timedelta | None


def median(values: list[timedelta]) -> timedelta | None:
    if not values:
        return None
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 1:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2


def successful_latencies(attempts: Iterable[Attempt]) -> list[timedelta]:
    return [a.latency for a in attempts if not a.failed and a.latency is not None]


def compute_stats(attempts: Iterable[Attempt]) -> Stats:
    """
    Latency statistics over the successful attempts of one check.

    Failed attempts only count towards `failed`; when nothing succeeded every
    latency field is None and threshold evaluation must be skipped.
    """
    items = list(attempts)
    latencies = successful_latencies(items)
    failed = sum(1 for a in items if a.failed)
    if not latencies:
        return Stats(total=len(items), failed=failed, min=None, max=None, mean=None, median=None)

    return Stats(
        total=len(items),
        failed=failed,
        min=min(latencies),
        max=max(latencies),
        mean=sum(latencies, timedelta(0)) / len(latencies),
        median=median(latencies),
    )
