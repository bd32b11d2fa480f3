from __future__ import annotations

import asyncio
import base64
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import httpx
import pytest

from health_checks.checks import EndpointChecker
from health_checks.http_probe import HttpProbe, HttpTransportConfig, build_http_client
from health_checks.models import ConfigurationError, Policy, Status


class _Handler(BaseHTTPRequestHandler):
    def log_message(self, format: str, *args) -> None:  # noqa: A002
        return

    def _reply(self, status: int, body: str, headers: dict[str, str] | None = None) -> None:
        body_bytes = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        for k, v in (headers or {}).items():
            self.send_header(k, v)
        self.send_header("Content-Length", str(len(body_bytes)))
        self.end_headers()
        self.wfile.write(body_bytes)

    def do_GET(self) -> None:  # noqa: N802
        if self.path == "/ok":
            self._reply(200, "all systems operational")
        elif self.path == "/maintenance":
            self._reply(200, "down for maintenance")
        elif self.path == "/bad_gateway":
            self._reply(502, "Bad Gateway")
        elif self.path == "/redirect":
            self._reply(302, "", {"Location": "/ok"})
        elif self.path == "/created":
            self._reply(201, "created")
        elif self.path == "/auth":
            expected = "Basic " + base64.b64encode(b"monitor:s3cret").decode("ascii")
            if self.headers.get("Authorization") == expected and self.headers.get("X-Api-Key") == "key-123":
                self._reply(200, "authorized")
            else:
                self._reply(401, "nope")
        else:
            self._reply(404, "Not Found")


@pytest.fixture(scope="module")
def local_server_base_url() -> str:
    httpd = HTTPServer(("127.0.0.1", 0), _Handler)
    host, port = httpd.server_address
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()

    try:
        yield f"http://{host}:{port}"
    finally:
        httpd.shutdown()
        thread.join(timeout=5)
        httpd.server_close()


@pytest.mark.asyncio
async def test_http_probe_ok(local_server_base_url: str) -> None:
    async with httpx.AsyncClient() as client:
        outcome = await HttpProbe(url=f"{local_server_base_url}/ok", client=client)()
    assert outcome.ok is True
    assert outcome.reason == ""


@pytest.mark.asyncio
async def test_http_probe_bad_status(local_server_base_url: str) -> None:
    async with httpx.AsyncClient() as client:
        outcome = await HttpProbe(url=f"{local_server_base_url}/bad_gateway", client=client)()
    assert outcome.ok is False
    assert outcome.reason == "response status 502 Bad Gateway"


@pytest.mark.asyncio
async def test_http_probe_custom_up_status(local_server_base_url: str) -> None:
    async with httpx.AsyncClient() as client:
        outcome = await HttpProbe(url=f"{local_server_base_url}/created", client=client, up_status=201)()
    assert outcome.ok is True


@pytest.mark.asyncio
async def test_http_probe_does_not_follow_redirects(local_server_base_url: str) -> None:
    client = build_http_client(HttpTransportConfig(timeout_seconds=5.0))
    async with client:
        outcome = await HttpProbe(url=f"{local_server_base_url}/redirect", client=client)()
    assert outcome.ok is False
    assert outcome.reason == "response status 302 Found"


@pytest.mark.asyncio
async def test_http_probe_body_rules(local_server_base_url: str) -> None:
    async with httpx.AsyncClient() as client:
        missing = await HttpProbe(url=f"{local_server_base_url}/ok", client=client, must_contain="welcome")()
        forbidden = await HttpProbe(
            url=f"{local_server_base_url}/maintenance", client=client, must_not_contain="maintenance"
        )()
        both_ok = await HttpProbe(
            url=f"{local_server_base_url}/ok",
            client=client,
            must_contain="operational",
            must_not_contain="maintenance",
        )()
    assert missing.reason == "response does not contain 'welcome'"
    assert forbidden.reason == "response contains 'maintenance'"
    assert both_ok.ok is True


@pytest.mark.asyncio
async def test_http_probe_expands_env_in_headers_and_auth(
    local_server_base_url: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("PROBE_API_KEY", "key-123")
    monkeypatch.setenv("PROBE_PASSWORD", "s3cret")
    async with httpx.AsyncClient() as client:
        outcome = await HttpProbe(
            url=f"{local_server_base_url}/auth",
            client=client,
            headers={"X-Api-Key": "${PROBE_API_KEY}"},
            basic_auth={"username": "monitor", "password": "${PROBE_PASSWORD}"},
        )()
    assert outcome.ok is True


@pytest.mark.asyncio
async def test_http_probe_connection_error_is_failure() -> None:
    async with httpx.AsyncClient(timeout=2.0) as client:
        # Port 9 (discard) is closed on test hosts.
        outcome = await HttpProbe(url="http://127.0.0.1:9/", client=client)()
    assert outcome.ok is False
    assert outcome.reason.startswith("ConnectError")


@pytest.mark.parametrize("url", ["", "not a url", "ftp://example.com/file", "http://"])
def test_http_probe_invalid_url_is_configuration_error(url: str) -> None:
    with pytest.raises(ConfigurationError):
        HttpProbe(url=url, client=httpx.AsyncClient())


@pytest.mark.asyncio
async def test_endpoint_checker_with_http_probe(local_server_base_url: str) -> None:
    async def no_sleep(seconds: float) -> None:
        await asyncio.sleep(0)

    async with httpx.AsyncClient() as client:
        ok_checker = EndpointChecker(
            name="local-ok",
            endpoint=f"{local_server_base_url}/ok",
            probe=HttpProbe(url=f"{local_server_base_url}/ok", client=client),
            policy=Policy(attempts=3),
            sleep=no_sleep,
        )
        bad_checker = EndpointChecker(
            name="local-bad",
            endpoint=f"{local_server_base_url}/bad_gateway",
            probe=HttpProbe(url=f"{local_server_base_url}/bad_gateway", client=client),
            policy=Policy(attempts=2, retries=1),
            sleep=no_sleep,
        )
        ok = await ok_checker.check()
        bad = await bad_checker.check()

    assert ok.status is Status.HEALTHY
    assert len(ok.attempts) == 3
    assert all(a.latency is not None for a in ok.attempts)
    assert bad.status is Status.DOWN
    assert bad.errors == ["response status 502 Bad Gateway"] * 2
