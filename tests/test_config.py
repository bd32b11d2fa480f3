from __future__ import annotations

from datetime import time as dt_time, timedelta
from pathlib import Path

import pytest

from health_checks.config import load_config
from health_checks.durations import format_duration, parse_duration
from health_checks.models import ConfigurationError, SeverityMode


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (0, timedelta(0)),
        (2.5, timedelta(seconds=2.5)),
        ("0", timedelta(0)),
        ("15ms", timedelta(milliseconds=15)),
        ("36h", timedelta(hours=36)),
        ("1h30m", timedelta(minutes=90)),
        ("1.5s", timedelta(seconds=1.5)),
    ],
)
def test_parse_duration(raw, expected: timedelta) -> None:
    assert parse_duration(raw) == expected


@pytest.mark.parametrize("raw", ["", "abc", "10x", "5 m", True])
def test_parse_duration_rejects_garbage(raw) -> None:
    with pytest.raises(ValueError):
        parse_duration(raw)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (timedelta(0), "0s"),
        (timedelta(milliseconds=15), "15ms"),
        (timedelta(seconds=90), "1m30s"),
        (timedelta(hours=36), "36h0m0s"),
    ],
)
def test_format_duration(value: timedelta, expected: str) -> None:
    assert format_duration(value) == expected


def _write(tmp_path: Path, text: str) -> Path:
    p = tmp_path / "checks.yaml"
    p.write_text(text, encoding="utf-8")
    return p


def test_load_config_full(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SLACK_WEBHOOK_URL", raising=False)
    path = _write(
        tmp_path,
        """
interval_seconds: 30
slack:
  webhook_url: https://hooks.example/abc
  channel: "#ops"
http_checks:
  - name: web
    url: https://example.com
    attempts: 3
    retries: 1
    attempt_spacing: 500ms
    latency_threshold: 0.2
    severity_mode: degraded
    maintenance_windows:
      - start: "03:00"
        duration: 30m
        timezone: Europe/Paris
backup_checks:
  - name: dumps
    kind: bucket
    bucket: backups
  - name: snaps
    kind: snapshot
    instance: db-1
    min_age_threshold: 48h
""",
    )
    cfg = load_config(path)
    assert cfg.interval_seconds == 30
    assert cfg.slack is not None and cfg.slack.channel == "#ops"

    policy = cfg.http_checks[0].to_policy()
    assert policy.attempts == 3
    assert policy.retries == 1
    assert policy.attempt_spacing == timedelta(milliseconds=500)
    assert policy.latency_threshold == timedelta(milliseconds=200)
    assert policy.severity_mode is SeverityMode.DEGRADED
    assert policy.maintenance_windows[0].start == dt_time(3, 0)
    assert policy.maintenance_windows[0].duration == timedelta(minutes=30)

    dumps, snaps = cfg.backup_checks
    assert dumps.min_age_threshold == timedelta(hours=36)
    assert dumps.min_size_threshold == 1024 * 1024
    assert dumps.target() == "s3://backups/"
    assert dumps.region == "eu-west-1"
    assert snaps.min_age_threshold == timedelta(hours=48)


def test_load_config_defaults(tmp_path: Path) -> None:
    cfg = load_config(_write(tmp_path, "http_checks:\n  - name: a\n    url: https://a.example\n"))
    policy = cfg.http_checks[0].to_policy()
    assert policy.attempts == 1
    assert policy.retries == 0
    assert policy.latency_threshold == timedelta(0)
    assert policy.severity_mode is SeverityMode.DOWN
    assert policy.maintenance_windows == ()


def test_load_config_env_webhook_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SLACK_WEBHOOK_URL", "https://hooks.example/from-env")
    cfg = load_config(_write(tmp_path, "slack:\n  channel: '#x'\n"))
    assert cfg.slack is not None
    assert cfg.slack.webhook_url == "https://hooks.example/from-env"
    assert cfg.slack.channel == "#x"


@pytest.mark.parametrize(
    "text",
    [
        "- just\n- a list\n",
        "http_checks:\n  - name: a\n",
        "http_checks:\n  - name: a\n    url: https://a\n    attempt_spacing: soon\n",
        "http_checks:\n  - name: a\n    url: https://a\n    severity_mode: sideways\n",
        "backup_checks:\n  - name: a\n    kind: tape\n",
        "http_checks:\n  - {name: a, url: 'https://a'}\nbackup_checks:\n  - {name: a, kind: image, image_prefix: x}\n",
        "http_checks: [unclosed\n",
    ],
)
def test_load_config_invalid(tmp_path: Path, text: str) -> None:
    with pytest.raises(ConfigurationError):
        load_config(_write(tmp_path, text))


def test_backup_target_requires_identifier(tmp_path: Path) -> None:
    cfg = load_config(_write(tmp_path, "backup_checks:\n  - name: snaps\n    kind: snapshot\n"))
    with pytest.raises(ConfigurationError):
        cfg.backup_checks[0].target()


def _window_config(start: str) -> str:
    return (
        "http_checks:\n"
        "  - name: a\n"
        "    url: https://a.example\n"
        "    maintenance_windows:\n"
        f"      - start: {start}\n"
        "        duration: 30m\n"
    )


@pytest.mark.parametrize(
    ("start", "expected"),
    [
        ("'03:00'", dt_time(3, 0)),
        ("'23:15:30'", dt_time(23, 15, 30)),
    ],
)
def test_maintenance_window_start_parsed(tmp_path: Path, start: str, expected: dt_time) -> None:
    cfg = load_config(_write(tmp_path, _window_config(start)))
    assert cfg.http_checks[0].to_policy().maintenance_windows[0].start == expected


@pytest.mark.parametrize("start", ["'25:00'", "'noon'", "03:00"])
def test_maintenance_window_bad_start(tmp_path: Path, start: str) -> None:
    with pytest.raises(ConfigurationError):
        load_config(_write(tmp_path, _window_config(start)))
