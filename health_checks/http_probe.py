from __future__ import annotations

import os
from dataclasses import dataclass, field
from http import HTTPStatus

import httpx

from health_checks.models import ConfigurationError, ProbeOutcome


@dataclass(frozen=True)
class HttpTransportConfig:
    timeout_seconds: float = 10.0
    insecure_skip_verify: bool = False
    proxy: str | None = None
    user_agent: str = "health-checks/0"


def build_http_client(config: HttpTransportConfig) -> httpx.AsyncClient:
    # Redirects are reported as-is so a 301/302 counts against `up_status`.
    try:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout_seconds, connect=min(config.timeout_seconds, 10.0)),
            verify=not config.insecure_skip_verify,
            proxy=config.proxy or None,
            follow_redirects=False,
            headers={"User-Agent": config.user_agent},
            limits=httpx.Limits(max_keepalive_connections=0),
        )
    except (ValueError, TypeError) as exc:
        raise ConfigurationError(f"cannot build http client: {exc}") from exc


def _validate_url(url: str) -> str:
    s = str(url or "").strip()
    try:
        parsed = httpx.URL(s)
    except httpx.InvalidURL as exc:
        raise ConfigurationError(f"invalid url {url!r}: {exc}") from exc
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ConfigurationError(f"invalid url {url!r}: expected http(s)://host/...")
    return s


def _status_text(code: int) -> str:
    try:
        return f"{code} {HTTPStatus(code).phrase}"
    except ValueError:
        return str(code)


@dataclass
class HttpProbe:
    """
    One GET against `url`; healthy when the status matches and the body rules hold.

    Header values and basic auth credentials may reference environment
    variables (`${NAME}`), expanded on every attempt.
    """

    url: str
    client: httpx.AsyncClient
    up_status: int = 200
    must_contain: str = ""
    must_not_contain: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    basic_auth: dict[str, str] | None = None

    def __post_init__(self) -> None:
        self.url = _validate_url(self.url)
        if not self.up_status:
            self.up_status = 200

    def _request_headers(self) -> dict[str, str]:
        return {k: os.path.expandvars(str(v)) for k, v in (self.headers or {}).items()}

    def _auth(self) -> tuple[str, str] | None:
        creds = self.basic_auth or {}
        if "username" in creds and "password" in creds:
            return os.path.expandvars(str(creds["username"])), os.path.expandvars(str(creds["password"]))
        return None

    async def __call__(self) -> ProbeOutcome:
        try:
            resp = await self.client.get(self.url, headers=self._request_headers(), auth=self._auth())
        except httpx.HTTPError as e:
            return ProbeOutcome.failure(f"{type(e).__name__}: {e}")

        if resp.status_code != self.up_status:
            return ProbeOutcome.failure(f"response status {_status_text(resp.status_code)}")

        if not self.must_contain and not self.must_not_contain:
            return ProbeOutcome.success()

        body = resp.text or ""
        if self.must_contain and self.must_contain not in body:
            return ProbeOutcome.failure(f"response does not contain '{self.must_contain}'")
        if self.must_not_contain and self.must_not_contain in body:
            return ProbeOutcome.failure(f"response contains '{self.must_not_contain}'")
        return ProbeOutcome.success()
