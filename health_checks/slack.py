from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from health_checks.models import NotificationError, Result


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlackConfig:
    webhook_url: str
    username: str = ""
    channel: str = ""
    timeout_seconds: float = 15.0


def _status_label(result: Result) -> str:
    if result.status is None:
        return "UNKNOWN"
    return result.status.value.upper()


def build_slack_payload(config: SlackConfig, result: Result, color: str) -> dict[str, Any]:
    fields = [
        {"title": result.title, "value": result.endpoint, "short": False},
        {"title": "Status", "value": _status_label(result), "short": False},
    ]
    if result.notice:
        fields.append({"title": "Notice", "value": result.notice, "short": False})
    errors = result.errors
    if errors:
        fields.append({"title": "Error", "value": errors[-1][:500], "short": False})

    payload: dict[str, Any] = {
        "text": result.title,
        "attachments": [{"color": color, "fields": fields}],
    }
    if config.username:
        payload["username"] = config.username
    if config.channel:
        payload["channel"] = config.channel
    return payload


def _redact(config: SlackConfig, msg: str) -> str:
    if config.webhook_url:
        return msg.replace(config.webhook_url, "<redacted>")
    return msg


class SlackSender:
    """Posts a Result to a Slack incoming webhook."""

    def __init__(self, client: httpx.AsyncClient, config: SlackConfig) -> None:
        self.client = client
        self.config = config

    async def send(self, result: Result, severity: str) -> None:
        payload = build_slack_payload(self.config, result, severity)
        try:
            resp = await self.client.post(self.config.webhook_url, json=payload, timeout=self.config.timeout_seconds)
        except httpx.HTTPError as e:
            raise NotificationError(_redact(self.config, f"slack_error: {type(e).__name__}: {e}")) from e

        if not (200 <= resp.status_code < 300):
            body = (resp.text or "")[:200]
            raise NotificationError(f"slack_error: status={resp.status_code} body={body!r}")
        LOGGER.debug("Slack message delivered endpoint=%s", result.endpoint)
