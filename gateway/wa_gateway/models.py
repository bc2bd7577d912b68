"""Data models shared across the gateway."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ChannelState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    AWAITING_AUTH = "awaiting_auth"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class ChannelEvent(str, Enum):
    INITIALIZE = "initialize"
    QR = "qr"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    AUTH_FAILURE = "auth_failure"
    DISCONNECTED = "disconnected"
    INIT_FAILED = "init_failed"
    ERROR = "error"


# States in which a client instance exists but is not yet usable.
INITIALIZING_STATES = frozenset(
    {
        ChannelState.INITIALIZING,
        ChannelState.AWAITING_AUTH,
        ChannelState.AUTHENTICATED,
    }
)


def utcnow_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass
class ErrorRecord:
    event: ChannelEvent
    message: str
    at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class ChannelSession:
    """The single external-channel connection.

    Mutated only by ``ConnectionStateMachine``; everything else reads
    ``SessionSnapshot`` copies.
    """

    state: ChannelState = ChannelState.UNINITIALIZED
    last_error: ErrorRecord | None = None
    qr_challenge: str | None = None
    qr_data_url: str | None = None
    reconnect_attempts: int = 0
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def initializing(self) -> bool:
        return self.state in INITIALIZING_STATES


@dataclass(frozen=True)
class SessionSnapshot:
    state: ChannelState
    initializing: bool
    qr_data_url: str | None
    last_error: str | None
    reconnect_attempts: int

    @property
    def ready(self) -> bool:
        return self.state == ChannelState.READY


@dataclass(frozen=True)
class SendRequest:
    number: str
    message: str


@dataclass
class SendResult:
    to: str
    chat_id: str
    message_id: str
    response_time_ms: int
    timestamp: str = field(default_factory=utcnow_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "to": self.to,
            "chatId": self.chat_id,
            "messageId": self.message_id,
            "responseTime": self.response_time_ms,
            "timestamp": self.timestamp,
        }


@dataclass
class RateLimitWindow:
    count: int
    reset_at: float
