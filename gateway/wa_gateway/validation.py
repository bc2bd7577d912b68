"""Validation of inbound send requests."""

from __future__ import annotations

import logging
from typing import Any

from .errors import InvalidInput
from .models import SendRequest

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096

EXAMPLE_PAYLOAD = {
    "number": "919876543210",
    "message": "Hello from backend 🚀",
}


def _is_blank(value: Any) -> bool:
    """True for values a JSON client sends to mean "not given": null, "", 0, false."""
    if value is None or value == "":
        return True
    if isinstance(value, (int, float)):
        return not value or value != value
    return False


def validate_send_request(payload: Any, client_ip: str | None = None) -> SendRequest:
    """Return a ``SendRequest`` or raise ``InvalidInput`` for the first failed rule."""
    if not isinstance(payload, dict):
        payload = {}

    number = payload.get("number")
    message = payload.get("message")

    if _is_blank(number) or _is_blank(message):
        logger.warning(
            "Validation failed: missing required fields (number=%s, message=%s, ip=%s)",
            not _is_blank(number),
            not _is_blank(message),
            client_ip,
        )
        raise InvalidInput(
            'Both "number" and "message" fields are required',
            example=EXAMPLE_PAYLOAD,
        )

    if not isinstance(number, str) or not isinstance(message, str):
        logger.warning(
            "Validation failed: invalid data types (number=%s, message=%s, ip=%s)",
            type(number).__name__,
            type(message).__name__,
            client_ip,
        )
        raise InvalidInput('Both "number" and "message" must be strings')

    if not message.strip():
        logger.warning("Validation failed: empty message (ip=%s)", client_ip)
        raise InvalidInput("Message cannot be empty")

    if len(message) > MAX_MESSAGE_LENGTH:
        logger.warning(
            "Validation failed: message too long (%d chars, ip=%s)",
            len(message),
            client_ip,
        )
        raise InvalidInput(f"Message too long (max {MAX_MESSAGE_LENGTH} characters)")

    return SendRequest(number=number, message=message)
