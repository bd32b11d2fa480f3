from __future__ import annotations

import argparse
import asyncio
import logging
import os
import time
from contextlib import AsyncExitStack
from datetime import timedelta
from pathlib import Path
from typing import Any, Iterable, Sequence

import httpx
import structlog

from health_checks.backup_probes import BackupChecker, Lister, bucket_lister, image_lister, snapshot_lister
from health_checks.checks import Checker, EndpointChecker, SetupFailedChecker
from health_checks.config import AppConfig, BackupCheckSettings, HttpCheckSettings, load_config
from health_checks.debounce import Debouncer, Notifier
from health_checks.durations import format_duration
from health_checks.http_probe import HttpProbe, HttpTransportConfig, build_http_client
from health_checks.models import CheckCycleReport, ConfigurationError, Result
from health_checks.slack import SlackConfig, SlackSender
from health_checks.stats import compute_stats


LOGGER = logging.getLogger("health-checks")
log = structlog.get_logger("health-checks.cycle")


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, str(level_name).upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    # Slack webhook URLs carry a secret path; keep request lines out of the logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.KeyValueRenderer(key_order=["event"]),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _aws_client(service: str, region: str) -> Any:
    try:
        import boto3
    except ImportError as exc:
        raise ConfigurationError("backup checks need boto3 (pip install 'health-checks[aws]')") from exc
    try:
        return boto3.client(service, region_name=region)
    except Exception as exc:
        raise ConfigurationError(f"cannot build {service} client region={region}: {exc}") from exc


def build_backup_lister(settings: BackupCheckSettings) -> Lister:
    settings.target()
    if settings.kind == "bucket":
        return bucket_lister(_aws_client("s3", settings.region), bucket=str(settings.bucket), prefix=settings.prefix)
    if settings.kind == "snapshot":
        return snapshot_lister(_aws_client("rds", settings.region), instance=str(settings.instance))
    return image_lister(_aws_client("ec2", settings.region), name_prefix=str(settings.image_prefix))


def _build_http_checker(
    hc: HttpCheckSettings, http_clients: dict[HttpTransportConfig, httpx.AsyncClient]
) -> EndpointChecker:
    transport = HttpTransportConfig(
        timeout_seconds=hc.timeout_seconds,
        insecure_skip_verify=hc.insecure_skip_verify,
        proxy=hc.proxy,
    )
    client = http_clients.get(transport)
    if client is None:
        client = build_http_client(transport)
        http_clients[transport] = client
    probe = HttpProbe(
        url=hc.url,
        client=client,
        up_status=hc.up_status,
        must_contain=hc.must_contain,
        must_not_contain=hc.must_not_contain,
        headers=dict(hc.headers),
        basic_auth=dict(hc.basic_auth) if hc.basic_auth else None,
    )
    return EndpointChecker(name=hc.name, endpoint=hc.url, probe=probe, policy=hc.to_policy())


def build_checkers(config: AppConfig, http_clients: dict[HttpTransportConfig, httpx.AsyncClient]) -> list[Checker]:
    """
    Build one checker per configured target.

    A target that cannot be set up gets a SetupFailedChecker, so it is reported
    every cycle while the other targets keep being checked.
    """
    checkers: list[Checker] = []
    for hc in config.http_checks:
        try:
            checkers.append(_build_http_checker(hc, http_clients))
        except ConfigurationError as exc:
            LOGGER.error("Check setup failed title=%s error=%s", hc.name, exc)
            checkers.append(SetupFailedChecker(name=hc.name, endpoint=hc.url, error=exc))

    for bc in config.backup_checks:
        try:
            checkers.append(
                BackupChecker(
                    name=bc.name,
                    lister=build_backup_lister(bc),
                    endpoint=bc.target(),
                    min_age=bc.min_age_threshold,
                    min_size=bc.min_size_threshold if bc.kind == "bucket" else None,
                )
            )
        except ConfigurationError as exc:
            LOGGER.error("Check setup failed title=%s error=%s", bc.name, exc)
            checkers.append(SetupFailedChecker(name=bc.name, endpoint=bc.name, error=exc))
    return checkers


async def _check_one(checker: Checker, semaphore: asyncio.Semaphore) -> Result:
    async with semaphore:
        return await checker.check()


async def run_cycle(
    checkers: Sequence[Checker],
    notifier: Notifier | None,
    *,
    semaphore: asyncio.Semaphore,
) -> CheckCycleReport:
    """
    Check every target concurrently and hand the batch of Results to the notifier.

    A target whose check raises a setup error gets no Result this cycle.
    """
    started = time.perf_counter()
    outcomes = await asyncio.gather(*(_check_one(c, semaphore) for c in checkers), return_exceptions=True)

    report = CheckCycleReport()
    for checker, outcome in zip(checkers, outcomes):
        if isinstance(outcome, ConfigurationError):
            LOGGER.error("Check setup failed title=%s error=%s", checker.name, outcome)
            report.setup_errors[checker.name] = str(outcome)
            continue
        if isinstance(outcome, BaseException):
            LOGGER.error(
                "Check crashed title=%s error=%s", checker.name, outcome, exc_info=outcome
            )
            report.setup_errors[checker.name] = f"{type(outcome).__name__}: {outcome}"
            continue
        report.results.append(outcome)

    if notifier is not None and report.results:
        await notifier.notify(report.results)

    log.info(
        "check_cycle_done",
        targets=len(checkers),
        healthy=sum(1 for r in report.results if r.healthy),
        degraded=sum(1 for r in report.results if r.degraded),
        down=sum(1 for r in report.results if r.down),
        setup_errors=len(report.setup_errors),
        duration_ms=round((time.perf_counter() - started) * 1000.0, 3),
    )
    return report


def _fmt_latency(value: timedelta | None) -> str:
    return format_duration(value) if value is not None else "-"


def _summarize(results: Iterable[Result]) -> None:
    for r in results:
        status = r.status.value if r.status is not None else "unknown"
        stats = compute_stats(r.attempts)
        detail = r.notice or ("; ".join(r.errors[-1:]) if r.errors else "")
        LOGGER.info(
            "Result title=%s endpoint=%s status=%s failed=%s/%s min=%s mean=%s median=%s max=%s %s",
            r.title,
            r.endpoint,
            status,
            stats.failed,
            stats.total,
            _fmt_latency(stats.min),
            _fmt_latency(stats.mean),
            _fmt_latency(stats.median),
            _fmt_latency(stats.max),
            detail,
        )


async def run_loop(config_path: Path, once: bool) -> int:
    config = load_config(config_path)
    interval_seconds = max(1, int(config.interval_seconds))
    semaphore = asyncio.Semaphore(max(1, int(config.check_concurrency)))

    http_clients: dict[HttpTransportConfig, httpx.AsyncClient] = {}
    async with AsyncExitStack() as stack:
        try:
            checkers = build_checkers(config, http_clients)
        finally:
            for client in http_clients.values():
                stack.push_async_callback(client.aclose)
        if not checkers:
            raise ConfigurationError("Config must define at least one http_checks or backup_checks entry")

        notifier: Notifier | None = None
        if config.slack is not None and config.slack.webhook_url:
            slack_client = await stack.enter_async_context(httpx.AsyncClient())
            sender = SlackSender(
                slack_client,
                SlackConfig(
                    webhook_url=config.slack.webhook_url,
                    username=config.slack.username,
                    channel=config.slack.channel,
                ),
            )
            notifier = Debouncer(sender)
        else:
            LOGGER.warning("No Slack webhook configured; results are only logged")

        LOGGER.info("Starting health checks targets=%s interval_seconds=%s", len(checkers), interval_seconds)
        while True:
            cycle_started = time.monotonic()
            report = await run_cycle(checkers, notifier, semaphore=semaphore)
            _summarize(report.results)
            if once:
                return 1 if report.setup_errors else 0

            sleep_for = max(0.0, interval_seconds - (time.monotonic() - cycle_started))
            LOGGER.debug("Sleeping until next cycle sleep_seconds=%s", round(sleep_for, 3))
            await asyncio.sleep(sleep_for)


def main() -> int:
    parser = argparse.ArgumentParser(description="Endpoint and backup health checks with Slack alerts")
    parser.add_argument(
        "--config",
        default=os.getenv("HEALTH_CHECKS_CONFIG", "checks.yaml"),
        help="Path to YAML config",
    )
    parser.add_argument("--once", action="store_true", help="Run one check cycle and exit")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (INFO, WARNING, ...)",
    )
    args = parser.parse_args()

    _configure_logging(args.log_level)
    try:
        return asyncio.run(run_loop(Path(args.config), once=bool(args.once)))
    except ConfigurationError as exc:
        LOGGER.error("Configuration error: %s", exc)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
