"""HTTP surface of the gateway (aiohttp)."""

from __future__ import annotations

import json
import logging
from typing import Any

from aiohttp import web

from .config import is_development
from .errors import GatewayError, InvalidInput, RateLimited, SendFailed
from .models import utcnow_iso
from .ratelimit import RateLimiter
from .sender import SendGateway
from .state import ConnectionStateMachine
from .status import StatusReporter
from .validation import validate_send_request

logger = logging.getLogger(__name__)

AVAILABLE_ENDPOINTS = [
    "GET /",
    "GET /status",
    "GET /health",
    "GET /qr",
    "POST /send-whatsapp",
]

SECURITY_HEADERS = {
    "Content-Security-Policy": (
        "default-src 'self'; img-src 'self' data:; object-src 'none'; "
        "frame-ancestors 'self'; base-uri 'self'"
    ),
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Frame-Options": "SAMEORIGIN",
}

# Typed app keys to avoid NotAppKeyWarning
_machine_key: web.AppKey[ConnectionStateMachine] = web.AppKey("machine")
_limiter_key: web.AppKey[RateLimiter] = web.AppKey("limiter")
_sender_key: web.AppKey[SendGateway] = web.AppKey("sender")
_reporter_key: web.AppKey[StatusReporter] = web.AppKey("reporter")
_config_key: web.AppKey[dict[str, Any]] = web.AppKey("config")


def _client_ip(request: web.Request) -> str:
    return request.remote or "unknown"


def _expose_details(request: web.Request) -> bool:
    return is_development(request.app[_config_key])


# ---------------------------------------------------------------------------
# Middlewares (outermost first)
# ---------------------------------------------------------------------------


@web.middleware
async def cors_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Answer preflights and add CORS headers for the configured origin."""
    origin = request.app[_config_key]["server"].get("cors_origin", "*")
    headers = {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Credentials": "true",
    }
    if origin != "*":
        headers["Vary"] = "Origin"

    if request.method == "OPTIONS" and "Access-Control-Request-Method" in request.headers:
        headers["Access-Control-Allow-Methods"] = "GET,HEAD,PUT,PATCH,POST,DELETE"
        requested = request.headers.get("Access-Control-Request-Headers")
        if requested:
            headers["Access-Control-Allow-Headers"] = requested
        return web.Response(status=204, headers=headers)

    response = await handler(request)
    response.headers.update(headers)
    return response


@web.middleware
async def security_headers_middleware(
    request: web.Request, handler: Any
) -> web.StreamResponse:
    response = await handler(request)
    if request.app[_config_key]["server"].get("security_headers", True):
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
    return response


@web.middleware
async def error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Translate gateway errors to JSON and hide anything unexpected."""
    try:
        return await handler(request)
    except RateLimited as exc:
        return web.json_response(
            exc.to_dict(),
            status=exc.status,
            headers=exc.headers(),
        )
    except SendFailed as exc:
        return web.json_response(
            exc.to_dict(expose_details=_expose_details(request)), status=exc.status
        )
    except GatewayError as exc:
        return web.json_response(exc.to_dict(), status=exc.status)
    except (web.HTTPNotFound, web.HTTPMethodNotAllowed):
        logger.warning(
            "404 - Endpoint not found (%s %s, ip=%s)",
            request.method,
            request.path,
            _client_ip(request),
        )
        return web.json_response(
            {
                "success": False,
                "error": "Endpoint not found",
                "availableEndpoints": AVAILABLE_ENDPOINTS,
            },
            status=404,
        )
    except web.HTTPException as exc:
        if exc.status < 400:
            raise
        return web.json_response({"success": False, "error": exc.reason}, status=exc.status)
    except Exception:
        logger.exception(
            "Unhandled error (%s %s, ip=%s)", request.method, request.path, _client_ip(request)
        )
        return web.json_response(
            {
                "success": False,
                "error": "Internal server error",
                "timestamp": utcnow_iso(),
            },
            status=500,
        )


@web.middleware
async def request_log_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    body = None
    if request.method == "POST" and request.can_read_body:
        body = (await request.read()).decode("utf-8", errors="replace")[:1000]
    logger.info(
        "%s %s (ip=%s, user_agent=%s)%s",
        request.method,
        request.path,
        _client_ip(request),
        request.headers.get("User-Agent", ""),
        f" body={body}" if body is not None else "",
    )
    return await handler(request)


@web.middleware
async def rate_limit_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    ip = _client_ip(request)
    try:
        decision = request.app[_limiter_key].hit(ip)
    except RateLimited:
        logger.warning("Rate limit exceeded (ip=%s, path=%s)", ip, request.path)
        raise
    response = await handler(request)
    response.headers.update(decision.headers())
    return response


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _handle_index(request: web.Request) -> web.Response:
    """GET /: service metadata."""
    logger.info("Service info requested (ip=%s)", _client_ip(request))
    return web.json_response(request.app[_reporter_key].service_info())


async def _handle_status(request: web.Request) -> web.Response:
    """GET /status: connection state, uptime and memory."""
    body = request.app[_reporter_key].status()
    logger.info(
        "Status check requested (ip=%s, connected=%s)",
        _client_ip(request),
        body["whatsappConnected"],
    )
    return web.json_response(body)


async def _handle_health(request: web.Request) -> web.Response:
    """GET /health: liveness probe."""
    body, status = request.app[_reporter_key].health()
    return web.json_response(body, status=status)


async def _handle_qr(request: web.Request) -> web.Response:
    """GET /qr: pending linking QR code as an embeddable image."""
    data_url = request.app[_machine_key].snapshot().qr_data_url
    if not data_url:
        return web.json_response(
            {
                "success": False,
                "error": (
                    "QR code not available at the moment. It may have been "
                    "scanned already or is not yet generated."
                ),
            },
            status=404,
        )
    return web.Response(
        text=f'<img src="{data_url}" alt="Scan this QR code with WhatsApp">',
        content_type="text/html",
    )


async def _handle_send(request: web.Request) -> web.Response:
    """POST /send-whatsapp: send one text message."""
    ip = _client_ip(request)
    raw = await request.read()
    try:
        text = raw.decode("utf-8")
        payload = json.loads(text) if text.strip() else {}
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("Validation failed: invalid JSON body (ip=%s)", ip)
        raise InvalidInput("Request body must be valid JSON") from None

    send_request = validate_send_request(payload, client_ip=ip)
    result = await request.app[_sender_key].send(send_request, client_ip=ip)
    return web.json_response(
        {
            "success": True,
            "message": "Message sent successfully",
            "data": result.to_dict(),
        }
    )


def create_app(
    config: dict[str, Any],
    machine: ConnectionStateMachine,
    limiter: RateLimiter,
    sender: SendGateway,
    reporter: StatusReporter,
) -> web.Application:
    """Build the aiohttp application around already-constructed components."""
    app = web.Application(
        client_max_size=config["server"]["request_size_limit"],
        middlewares=[
            cors_middleware,
            security_headers_middleware,
            error_middleware,
            rate_limit_middleware,
            request_log_middleware,
        ],
    )
    app[_config_key] = config
    app[_machine_key] = machine
    app[_limiter_key] = limiter
    app[_sender_key] = sender
    app[_reporter_key] = reporter

    app.router.add_get("/", _handle_index)
    app.router.add_get("/status", _handle_status)
    app.router.add_get("/health", _handle_health)
    app.router.add_get("/qr", _handle_qr)
    app.router.add_post("/send-whatsapp", _handle_send)
    return app
