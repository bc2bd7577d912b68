"""Connection lifecycle of the external WhatsApp client.

The ``ConnectionStateMachine`` owns the single ``ChannelSession`` and the live
``ChannelClient``.  Lifecycle events emitted by the client are fed through
``transition()``, a single table-driven function, so every state change goes
through one place::

    uninitialized -> initializing -> awaiting_auth <-> authenticated -> ready
                                  \\-> authenticated -> ready

    (initializing | awaiting_auth | authenticated | ready)
        --disconnected--> disconnected --(reconnect delay)--> initializing
        --auth_failure--> error

All handlers run synchronously on the event loop and never await while
mutating the session, so transitions are serialized without a lock.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from . import qr
from .channels.base import ChannelClient
from .models import (
    INITIALIZING_STATES,
    ChannelEvent,
    ChannelSession,
    ChannelState,
    ErrorRecord,
    SessionSnapshot,
)

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], ChannelClient]

_S = ChannelState
_LIVE = {_S.INITIALIZING, _S.AWAITING_AUTH, _S.AUTHENTICATED, _S.READY}

# event -> {from_state: to_state}
_TRANSITIONS: dict[ChannelEvent, dict[ChannelState, ChannelState]] = {
    ChannelEvent.INITIALIZE: {
        s: _S.INITIALIZING for s in (_S.UNINITIALIZED, _S.DISCONNECTED, _S.ERROR, _S.READY)
    },
    ChannelEvent.QR: {s: _S.AWAITING_AUTH for s in INITIALIZING_STATES},
    ChannelEvent.AUTHENTICATED: {
        s: _S.AUTHENTICATED for s in (_S.INITIALIZING, _S.AWAITING_AUTH)
    },
    ChannelEvent.READY: {s: _S.READY for s in (_S.INITIALIZING, _S.AUTHENTICATED)},
    ChannelEvent.AUTH_FAILURE: {s: _S.ERROR for s in _LIVE},
    ChannelEvent.DISCONNECTED: {s: _S.DISCONNECTED for s in _LIVE},
    ChannelEvent.INIT_FAILED: {s: _S.ERROR for s in INITIALIZING_STATES},
}


def transition(state: ChannelState, event: ChannelEvent) -> ChannelState | None:
    """Return the state ``event`` leads to from ``state``, or None if not allowed."""
    return _TRANSITIONS.get(event, {}).get(state)


class ConnectionStateMachine:
    """Tracks whether the WhatsApp channel is usable and recovers from drops.

    Config keys (the ``whatsapp`` config section):
        qr_file: Optional path the terminal QR block is written to
        reconnect.delay_ms: Delay before reconnecting (default ``5000``)
        reconnect.backoff_factor: Multiplier per consecutive attempt (default ``1.0``)
        reconnect.max_delay_ms: Upper bound for the delay (default ``300000``)
        reconnect.max_attempts: Give up after this many attempts, ``0`` = never
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        config: dict[str, Any] | None = None,
    ) -> None:
        config = config or {}
        reconnect = config.get("reconnect", {})
        self._client_factory = client_factory
        self._qr_file: str | None = config.get("qr_file")
        self._delay = int(reconnect.get("delay_ms", 5000)) / 1000
        self._backoff = float(reconnect.get("backoff_factor", 1.0))
        self._max_delay = int(reconnect.get("max_delay_ms", 300_000)) / 1000
        self._max_attempts = int(reconnect.get("max_attempts", 0))

        self._session = ChannelSession()
        self._client: ChannelClient | None = None
        self._start_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._closed = False

    # ---- read side ----

    @property
    def state(self) -> ChannelState:
        return self._session.state

    @property
    def client(self) -> ChannelClient | None:
        return self._client

    def snapshot(self) -> SessionSnapshot:
        s = self._session
        return SessionSnapshot(
            state=s.state,
            initializing=s.initializing,
            qr_data_url=s.qr_data_url,
            last_error=s.last_error.message if s.last_error else None,
            reconnect_attempts=s.reconnect_attempts,
        )

    def reconnect_delay(self, attempt: int) -> float:
        """Seconds to wait before reconnect ``attempt`` (1-based)."""
        return min(self._delay * self._backoff ** (attempt - 1), self._max_delay)

    # ---- lifecycle ----

    def initialize(self) -> bool:
        """Start a fresh client unless one is already initializing.

        Returns True when a new initialization was started.
        """
        if self._closed:
            logger.warning("Ignoring initialize(): gateway is shutting down")
            return False
        if self._session.initializing:
            logger.warning("WhatsApp client initialization already in progress")
            return False
        if not self._apply(ChannelEvent.INITIALIZE):
            return False

        self._cancel_reconnect()
        previous = self._client
        try:
            client = self._client_factory()
        except Exception as exc:
            logger.exception("Failed to create WhatsApp client")
            self._client = None
            if previous is not None:
                self._start_task = asyncio.create_task(self._destroy(previous))
            self.handle_event(ChannelEvent.INIT_FAILED, {"message": str(exc)})
            return False

        client.set_event_handler(self._handler_for(client))
        self._client = client
        logger.info("Initializing WhatsApp client")
        self._start_task = asyncio.create_task(self._establish(client, previous))
        return True

    async def shutdown(self) -> None:
        """Tear down the client without a state transition."""
        self._closed = True
        self._cancel_reconnect()
        client, self._client = self._client, None

        if self._start_task and not self._start_task.done():
            self._start_task.cancel()
            try:
                await self._start_task
            except asyncio.CancelledError:
                pass

        if client is None:
            return
        try:
            await client.destroy()
            logger.info("WhatsApp client destroyed successfully")
        except Exception:
            logger.exception("Error destroying WhatsApp client")

    async def _destroy(self, client: ChannelClient) -> None:
        try:
            await client.destroy()
        except Exception:
            logger.exception("Error destroying previous WhatsApp client")

    async def _establish(self, client: ChannelClient, previous: ChannelClient | None) -> None:
        if previous is not None:
            await self._destroy(previous)
        try:
            await client.start()
        except Exception as exc:
            logger.error("Failed to initialize WhatsApp client: %s", exc)
            if client is self._client:
                self.handle_event(ChannelEvent.INIT_FAILED, {"message": str(exc)})

    # ---- events ----

    def _handler_for(self, client: ChannelClient) -> Callable[[ChannelEvent, dict[str, Any]], None]:
        def _on_event(event: ChannelEvent, data: dict[str, Any]) -> None:
            if client is not self._client:
                logger.debug("Dropping %s event from a stale client", event.value)
                return
            self.handle_event(event, data)

        return _on_event

    def handle_event(self, event: ChannelEvent, data: dict[str, Any] | None = None) -> None:
        """Apply one lifecycle event from the current client."""
        data = data or {}

        if event == ChannelEvent.ERROR:
            message = str(data.get("message", "unknown error"))
            logger.error("WhatsApp client error: %s", message)
            self._session.last_error = ErrorRecord(event, message)
            return

        if not self._apply(event):
            return

        if event == ChannelEvent.QR:
            self._on_qr(str(data.get("qr", "")))
        elif event == ChannelEvent.AUTHENTICATED:
            self._session.qr_challenge = None
            self._session.qr_data_url = None
            logger.info("WhatsApp authenticated successfully")
        elif event == ChannelEvent.READY:
            self._session.qr_challenge = None
            self._session.qr_data_url = None
            self._session.reconnect_attempts = 0
            logger.info("WhatsApp client is ready (phone=%s)", data.get("phone", "unknown"))
        elif event in (ChannelEvent.AUTH_FAILURE, ChannelEvent.INIT_FAILED):
            message = str(data.get("message", "unknown"))
            self._session.last_error = ErrorRecord(event, message)
            self._session.qr_challenge = None
            self._session.qr_data_url = None
            logger.error(
                "WhatsApp %s: %s (re-run initialization to retry)",
                event.value.replace("_", " "),
                message,
            )
        elif event == ChannelEvent.DISCONNECTED:
            reason = str(data.get("reason", "unknown"))
            self._session.last_error = ErrorRecord(event, reason)
            self._session.qr_challenge = None
            self._session.qr_data_url = None
            logger.warning("WhatsApp client disconnected: %s", reason)
            self._schedule_reconnect()

    def _apply(self, event: ChannelEvent) -> bool:
        current = self._session.state
        target = transition(current, event)
        if target is None:
            logger.warning("Ignoring '%s' event in state '%s'", event.value, current.value)
            return False
        self._session.state = target
        self._session.updated_at = datetime.now(UTC)
        logger.info("WhatsApp channel state %s -> %s", current.value, target.value)
        return True

    def _on_qr(self, payload: str) -> None:
        self._session.qr_challenge = payload
        logger.info("QR code generated for WhatsApp login")
        try:
            self._session.qr_data_url = qr.render_data_url(payload)
            block = qr.render_terminal(payload)
        except Exception:
            logger.exception("Failed to render QR code")
            return

        logger.info("Scan the QR code below or open the /qr endpoint:\n%s", block)
        if self._qr_file:
            try:
                path = Path(self._qr_file).expanduser()
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(block)
            except OSError:
                logger.exception("Failed to write QR code to %s", self._qr_file)

    # ---- reconnect ----

    def _schedule_reconnect(self) -> None:
        if self._closed:
            return
        attempt = self._session.reconnect_attempts + 1
        if self._max_attempts and attempt > self._max_attempts:
            logger.error(
                "Not reconnecting: reached reconnect.max_attempts=%d", self._max_attempts
            )
            return
        self._session.reconnect_attempts = attempt
        delay = self.reconnect_delay(attempt)
        self._cancel_reconnect()
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))
        logger.info("Reconnecting WhatsApp client in %.1fs (attempt %d)", delay, attempt)

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reconnect_task = None
        logger.info("Attempting to reconnect WhatsApp client")
        self.initialize()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None
