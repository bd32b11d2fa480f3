from __future__ import annotations

import asyncio
import logging
import time
from datetime import timedelta
from typing import Awaitable, Callable

from health_checks.models import Attempt, Attempts, ConfigurationError, Policy, ProbeOutcome


LOGGER = logging.getLogger(__name__)

Probe = Callable[[], Awaitable[ProbeOutcome]]
Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


async def _invoke(probe: Probe) -> ProbeOutcome:
    try:
        return await probe()
    except ConfigurationError:
        raise
    except Exception as exc:
        return ProbeOutcome.failure(f"{type(exc).__name__}: {exc}")


async def _pause(sleep: Sleep, spacing: timedelta) -> None:
    seconds = spacing.total_seconds()
    if seconds > 0:
        await sleep(seconds)


async def _retry(probe: Probe, policy: Policy, sleep: Sleep) -> ProbeOutcome:
    outcome = ProbeOutcome.failure("no retry attempted")
    for _ in range(policy.retries):
        await _pause(sleep, policy.retry_spacing)
        outcome = await _invoke(probe)
        if outcome.ok:
            break
    return outcome


async def run_attempts(
    probe: Probe,
    policy: Policy,
    *,
    sleep: Sleep = asyncio.sleep,
    clock: Clock = time.perf_counter,
) -> Attempts:
    """
    Drive `probe` through the configured attempts, in order.

    A failed attempt is retried up to `policy.retries` times. A successful retry
    records latency measured from the start of the original attempt; exhausting
    the retries records the last failure reason.
    """
    policy = policy.normalized()
    attempts: Attempts = []
    for i in range(policy.attempts):
        started = clock()
        outcome = await _invoke(probe)
        if not outcome.ok and policy.retries > 0:
            LOGGER.debug("Attempt failed; retrying attempt=%s reason=%s", i, outcome.reason)
            outcome = await _retry(probe, policy, sleep)

        if outcome.ok:
            attempts.append(Attempt(latency=timedelta(seconds=clock() - started)))
        else:
            attempts.append(Attempt(error=outcome.reason))

        if i < policy.attempts - 1:
            await _pause(sleep, policy.attempt_spacing)
    return attempts
