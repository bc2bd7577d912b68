"""Shared fixtures for wa-gateway tests.

Provides a FakeChannelClient that emits the same lifecycle events as the
whatsapp-web.js bridge, a factory that records every client it creates,
and config helpers.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from wa_gateway.channels.base import ChannelClient
from wa_gateway.config import load_config
from wa_gateway.models import ChannelEvent
from wa_gateway.state import ConnectionStateMachine

# ---------------------------------------------------------------------------
# FakeChannelClient
# ---------------------------------------------------------------------------


class FakeChannelClient(ChannelClient):
    """In-memory stand-in for the WhatsApp bridge client.

    Tracks:
      - start() / destroy() calls
      - get_number_id() lookups
      - delivered messages
    """

    def __init__(
        self,
        name: str = "fake",
        config: dict[str, Any] | None = None,
        *,
        registered: bool = True,
        start_error: Exception | None = None,
        send_error: Exception | None = None,
    ) -> None:
        super().__init__(name, config or {})
        self.registered = registered
        self.start_error = start_error
        self.send_error = send_error
        self.started = False
        self.destroyed = False
        self.lookups: list[str] = []
        self.sent: list[tuple[str, str]] = []

    async def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True
        self._running = True

    async def destroy(self) -> None:
        self.destroyed = True
        self._running = False

    async def get_number_id(self, chat_id: str) -> str | None:
        self.lookups.append(chat_id)
        return chat_id if self.registered else None

    async def send_message(self, chat_id: str, text: str) -> str:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((chat_id, text))
        return f"true_{chat_id}_3EB0C767D26A"

    def emit(self, event: ChannelEvent, data: dict[str, Any] | None = None) -> None:
        """Simulate a bridge lifecycle event."""
        self._emit(event, data)


class FakeClientFactory:
    """Callable client factory that remembers every client it built."""

    def __init__(self, **client_kwargs: Any) -> None:
        self.client_kwargs = client_kwargs
        self.clients: list[FakeChannelClient] = []

    def __call__(self) -> FakeChannelClient:
        client = FakeChannelClient(**self.client_kwargs)
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeChannelClient:
        return self.clients[-1]


async def settle() -> None:
    """Let background tasks spawned by the state machine run."""
    for _ in range(5):
        await asyncio.sleep(0)


async def make_ready(machine: ConnectionStateMachine, factory: FakeClientFactory) -> FakeChannelClient:
    """Drive a fresh machine to READY through the normal event sequence."""
    assert machine.initialize()
    await settle()
    client = factory.last
    client.emit(ChannelEvent.AUTHENTICATED)
    client.emit(ChannelEvent.READY, {"phone": "15551234567"})
    return client


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def factory() -> FakeClientFactory:
    """Return a fresh FakeClientFactory for each test."""
    return FakeClientFactory()


@pytest.fixture()
def config(tmp_path: Path) -> dict[str, Any]:
    """Default config with no environment leakage and logs under tmp_path."""
    cfg = load_config(env={})
    cfg["logging"]["dir"] = str(tmp_path / "logs")
    cfg["server"]["port"] = 0
    cfg["whatsapp"]["reconnect"]["delay_ms"] = 10
    return cfg


@pytest.fixture()
def tmp_dir(tmp_path: Path) -> Path:
    """Return pytest's tmp_path (convenience alias)."""
    return tmp_path
