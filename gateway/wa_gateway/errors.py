"""Error taxonomy for the gateway.

Request-level errors (``GatewayError`` subclasses) carry the HTTP status and
the JSON body the server returns for them.  Channel-level errors
(``ChannelError`` subclasses) are raised by channel clients and translated by
``SendGateway`` before they reach a caller.
"""

from __future__ import annotations

import math
from typing import Any

from .models import utcnow_iso


class GatewayError(Exception):
    status: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.message}


class InvalidInput(GatewayError):
    status = 400

    def __init__(self, message: str, example: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.example = example

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        if self.example is not None:
            body["example"] = self.example
        return body


class RateLimited(GatewayError):
    status = 429

    def __init__(self, retry_after: str, reset_after: float, limit: int) -> None:
        super().__init__("Too many requests from this IP, please try again later.")
        self.retry_after = retry_after
        self.reset_after = reset_after
        self.limit = limit

    def headers(self) -> dict[str, str]:
        reset = str(math.ceil(self.reset_after))
        return {
            "Retry-After": reset,
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": "0",
            "RateLimit-Reset": reset,
        }

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "retryAfter": self.retry_after}


class ChannelNotReady(GatewayError):
    status = 503

    def __init__(self, initializing: bool) -> None:
        super().__init__(
            "WhatsApp client is not ready. Please wait for connection or scan QR code."
        )
        self.initializing = initializing

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "whatsappConnected": False,
            "clientInitializing": self.initializing,
        }


class DestinationNotRegistered(GatewayError):
    status = 404

    def __init__(self, number: str) -> None:
        super().__init__("Phone number is not registered on WhatsApp")
        self.number = number

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "number": self.number}


class SendFailed(GatewayError):
    """Unexpected channel failure.

    ``details`` holds the underlying channel message; it is only shown to
    callers when ``expose_details`` is set (development mode).
    """

    status = 500

    def __init__(self, details: str, response_time_ms: int) -> None:
        super().__init__("Failed to send message")
        self.details = details
        self.response_time_ms = response_time_ms
        self.timestamp = utcnow_iso()

    def to_dict(self, expose_details: bool = False) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "details": self.details if expose_details else "Internal server error",
            "responseTime": self.response_time_ms,
            "timestamp": self.timestamp,
        }


class ChannelError(Exception):
    """Raised by a channel client when the external channel fails a call."""


class ChannelUnavailable(ChannelError):
    """The external channel could not be started at all."""


class ChannelTimeout(ChannelError):
    """The external channel did not answer within the call timeout."""
