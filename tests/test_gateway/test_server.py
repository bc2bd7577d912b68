"""End-to-end tests for the HTTP surface."""

from __future__ import annotations

from typing import Any

import pytest
from aiohttp.test_utils import TestClient, TestServer

from conftest import FakeClientFactory, make_ready, settle
from wa_gateway.daemon import GatewayDaemon
from wa_gateway.errors import ChannelError
from wa_gateway.models import ChannelEvent
from wa_gateway.server import AVAILABLE_ENDPOINTS

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_daemon(
    config: dict[str, Any], factory: FakeClientFactory, **overrides: Any
) -> GatewayDaemon:
    for section, values in overrides.items():
        if isinstance(values, dict):
            config[section].update(values)
        else:
            config[section] = values
    return GatewayDaemon(config, client_factory=factory)


# ---------------------------------------------------------------------------
# Info endpoints
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_index(config, factory):
    d = _make_daemon(config, factory)
    async with TestClient(TestServer(d.app)) as client:
        resp = await client.get("/")
        assert resp.status == 200
        body = await resp.json()
        assert body["status"] == "Disconnected"
        assert body["service"]
        assert "uptime" in body


@pytest.mark.asyncio
async def test_status_and_health_while_disconnected(config, factory):
    d = _make_daemon(config, factory)
    async with TestClient(TestServer(d.app)) as client:
        resp = await client.get("/status")
        body = await resp.json()
        assert resp.status == 200
        assert body["success"] is True
        assert body["whatsappConnected"] is False
        assert body["clientInitializing"] is False
        assert set(body["memory"]) == {"rss", "vms"}

        resp = await client.get("/health")
        body = await resp.json()
        assert resp.status == 200
        assert body["checks"]["server"] == "ok"
        assert body["checks"]["whatsapp"] == "disconnected"


@pytest.mark.asyncio
async def test_unknown_path_lists_endpoints(config, factory):
    d = _make_daemon(config, factory)
    async with TestClient(TestServer(d.app)) as client:
        resp = await client.get("/nope")
        assert resp.status == 404
        body = await resp.json()
        assert body["success"] is False
        assert body["error"] == "Endpoint not found"
        assert body["availableEndpoints"] == AVAILABLE_ENDPOINTS

        resp = await client.get("/send-whatsapp")
        assert resp.status == 404


# ---------------------------------------------------------------------------
# /qr
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_qr_404_without_challenge(config, factory):
    d = _make_daemon(config, factory)
    async with TestClient(TestServer(d.app)) as client:
        resp = await client.get("/qr")
        assert resp.status == 404
        assert (await resp.json())["success"] is False


@pytest.mark.asyncio
async def test_qr_serves_image_while_awaiting_auth(config, factory):
    d = _make_daemon(config, factory)
    async with TestClient(TestServer(d.app)) as client:
        d.machine.initialize()
        await settle()
        factory.last.emit(ChannelEvent.QR, {"qr": "2@challenge"})

        resp = await client.get("/qr")
        assert resp.status == 200
        assert resp.content_type == "text/html"
        text = await resp.text()
        assert text.startswith('<img src="data:image/png;base64,')

        factory.last.emit(ChannelEvent.AUTHENTICATED)
        resp = await client.get("/qr")
        assert resp.status == 404
    await d.machine.shutdown()


# ---------------------------------------------------------------------------
# /send-whatsapp
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_send_success(config, factory):
    d = _make_daemon(config, factory)
    async with TestClient(TestServer(d.app)) as client:
        wa = await make_ready(d.machine, factory)

        resp = await client.post(
            "/send-whatsapp", json={"number": "9876543210", "message": "Hello"}
        )
        assert resp.status == 200
        body = await resp.json()
        assert body["success"] is True
        assert body["message"] == "Message sent successfully"
        assert body["data"]["to"] == "9876543210"
        assert body["data"]["chatId"] == "919876543210@c.us"
        assert body["data"]["messageId"]
        assert wa.sent == [("919876543210@c.us", "Hello")]
    await d.machine.shutdown()


@pytest.mark.asyncio
async def test_send_missing_message(config, factory):
    d = _make_daemon(config, factory)
    async with TestClient(TestServer(d.app)) as client:
        resp = await client.post("/send-whatsapp", json={"number": "9876543210"})
        assert resp.status == 400
        body = await resp.json()
        assert body["example"] == {"number": "919876543210", "message": "Hello from backend 🚀"}


@pytest.mark.asyncio
async def test_send_message_too_long(config, factory):
    d = _make_daemon(config, factory)
    async with TestClient(TestServer(d.app)) as client:
        resp = await client.post(
            "/send-whatsapp", json={"number": "9876543210", "message": "x" * 4097}
        )
        assert resp.status == 400
        assert "too long" in (await resp.json())["error"]


@pytest.mark.asyncio
async def test_send_invalid_json(config, factory):
    d = _make_daemon(config, factory)
    async with TestClient(TestServer(d.app)) as client:
        resp = await client.post(
            "/send-whatsapp", data="{not json", headers={"Content-Type": "application/json"}
        )
        assert resp.status == 400
        assert (await resp.json())["error"] == "Request body must be valid JSON"


@pytest.mark.asyncio
async def test_send_body_not_utf8(config, factory):
    d = _make_daemon(config, factory)
    async with TestClient(TestServer(d.app)) as client:
        resp = await client.post(
            "/send-whatsapp",
            data=b'{"number":"9876543210","message":"\xff\xfe"}',
            headers={"Content-Type": "application/json"},
        )
        assert resp.status == 400
        assert (await resp.json())["error"] == "Request body must be valid JSON"


@pytest.mark.asyncio
async def test_send_while_disconnected_is_503(config, factory):
    config["whatsapp"]["reconnect"]["delay_ms"] = 60_000
    d = _make_daemon(config, factory)
    async with TestClient(TestServer(d.app)) as client:
        wa = await make_ready(d.machine, factory)
        wa.emit(ChannelEvent.DISCONNECTED, {"reason": "LOGOUT"})

        resp = await client.post(
            "/send-whatsapp", json={"number": "9876543210", "message": "Hello"}
        )
        assert resp.status == 503
        body = await resp.json()
        assert body["success"] is False
        assert body["whatsappConnected"] is False
        assert body["clientInitializing"] is False
        assert wa.lookups == []
    await d.machine.shutdown()


@pytest.mark.asyncio
async def test_send_unregistered_number(config):
    factory = FakeClientFactory(registered=False)
    d = _make_daemon(config, factory)
    async with TestClient(TestServer(d.app)) as client:
        await make_ready(d.machine, factory)
        resp = await client.post(
            "/send-whatsapp", json={"number": "12345", "message": "Hello"}
        )
        assert resp.status == 404
        body = await resp.json()
        assert body["number"] == "12345"
        assert body["error"] == "Phone number is not registered on WhatsApp"
    await d.machine.shutdown()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("environment", "details"),
    [("development", "chat not found"), ("production", "Internal server error")],
)
async def test_send_failure_details_depend_on_environment(config, environment, details):
    factory = FakeClientFactory(send_error=ChannelError("chat not found"))
    d = _make_daemon(config, factory, environment=environment)
    async with TestClient(TestServer(d.app)) as client:
        await make_ready(d.machine, factory)
        resp = await client.post(
            "/send-whatsapp", json={"number": "9876543210", "message": "Hello"}
        )
        assert resp.status == 500
        body = await resp.json()
        assert body["error"] == "Failed to send message"
        assert body["details"] == details
        assert "responseTime" in body
    await d.machine.shutdown()


@pytest.mark.asyncio
async def test_body_size_limit(config, factory):
    d = _make_daemon(config, factory, server={"request_size_limit": 64})
    async with TestClient(TestServer(d.app)) as client:
        resp = await client.post(
            "/send-whatsapp", json={"number": "9876543210", "message": "x" * 200}
        )
        assert resp.status == 413
        assert (await resp.json())["success"] is False


@pytest.mark.asyncio
async def test_oversized_body_counts_against_rate_limit(config, factory):
    d = _make_daemon(
        config,
        factory,
        server={"request_size_limit": 64},
        rate_limit={"window_ms": 60_000, "max_requests": 1},
    )
    async with TestClient(TestServer(d.app)) as client:
        statuses = []
        for _ in range(3):
            resp = await client.post(
                "/send-whatsapp", json={"number": "9876543210", "message": "x" * 500}
            )
            statuses.append(resp.status)

        assert statuses == [413, 429, 429]
        assert d.limiter.tracked_keys() == 1


# ---------------------------------------------------------------------------
# Middlewares
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_rate_limit(config, factory):
    d = _make_daemon(config, factory, rate_limit={"window_ms": 60_000, "max_requests": 2})
    async with TestClient(TestServer(d.app)) as client:
        first = await client.get("/health")
        assert first.headers["RateLimit-Limit"] == "2"
        assert first.headers["RateLimit-Remaining"] == "1"
        await client.get("/health")

        resp = await client.get("/health")
        assert resp.status == 429
        body = await resp.json()
        assert body["error"] == "Too many requests from this IP, please try again later."
        assert body["retryAfter"] == "1 minute"
        assert int(resp.headers["Retry-After"]) <= 60
        assert resp.headers["RateLimit-Limit"] == "2"
        assert resp.headers["RateLimit-Remaining"] == "0"
        assert resp.headers["RateLimit-Reset"] == resp.headers["Retry-After"]


@pytest.mark.asyncio
async def test_security_and_cors_headers(config, factory):
    d = _make_daemon(config, factory, server={"cors_origin": "https://app.example.com"})
    async with TestClient(TestServer(d.app)) as client:
        resp = await client.get("/")
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["Access-Control-Allow-Origin"] == "https://app.example.com"
        assert resp.headers["Access-Control-Allow-Credentials"] == "true"

        resp = await client.options(
            "/send-whatsapp",
            headers={
                "Origin": "https://app.example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "content-type",
            },
        )
        assert resp.status == 204
        assert "POST" in resp.headers["Access-Control-Allow-Methods"]
        assert resp.headers["Access-Control-Allow-Headers"] == "content-type"


@pytest.mark.asyncio
async def test_security_headers_can_be_disabled(config, factory):
    d = _make_daemon(config, factory, server={"security_headers": False})
    async with TestClient(TestServer(d.app)) as client:
        resp = await client.get("/")
        assert "X-Content-Type-Options" not in resp.headers


@pytest.mark.asyncio
async def test_unexpected_error_is_hidden(config, factory, monkeypatch):
    d = _make_daemon(config, factory)

    def _boom() -> dict:
        raise RuntimeError("secret internals")

    monkeypatch.setattr(d.reporter, "service_info", _boom)
    async with TestClient(TestServer(d.app)) as client:
        resp = await client.get("/")
        assert resp.status == 500
        body = await resp.json()
        assert body == {
            "success": False,
            "error": "Internal server error",
            "timestamp": body["timestamp"],
        }
