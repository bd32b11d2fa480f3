from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from health_checks.evaluator import evaluate
from health_checks.executor import Probe, Sleep, run_attempts
from health_checks.models import ConfigurationError, Policy, Result, timestamp


class Checker(Protocol):
    name: str

    async def check(self) -> Result: ...


@dataclass
class EndpointChecker:
    """Runs a probe through the attempt policy and concludes its verdict."""

    name: str
    endpoint: str
    probe: Probe
    policy: Policy = field(default_factory=Policy)
    sleep: Sleep = asyncio.sleep

    async def check(self, *, now: datetime | None = None) -> Result:
        started_ts = timestamp()
        attempts = await run_attempts(self.probe, self.policy, sleep=self.sleep)
        result = Result(title=self.name, endpoint=self.endpoint, timestamp=started_ts, attempts=tuple(attempts))
        return evaluate(result, self.policy.normalized(), now=now)


@dataclass
class SetupFailedChecker:
    """Stands in for a target whose probe could not be built; every check re-raises the setup error."""

    name: str
    endpoint: str
    error: ConfigurationError

    async def check(self, *, now: datetime | None = None) -> Result:
        raise ConfigurationError(str(self.error))
