"""Abstract base class for channel clients."""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from ..models import ChannelEvent

logger = logging.getLogger(__name__)

# Callback type: receives a lifecycle event and its payload.  Must not block.
EventHandler = Callable[[ChannelEvent, dict[str, Any]], None]


class ChannelClient(ABC):
    """Base class for the external messaging channel.

    A client is created fresh for every initialization attempt.  After
    ``start()`` returns, lifecycle changes arrive through the registered
    event handler; ``get_number_id()`` and ``send_message()`` are only
    meaningful once the handler has seen ``ChannelEvent.READY``.

    Supports a ``dry_run`` mode where outbound sends are logged but never
    delivered.  Enable via ``config["dry_run"] = True``.
    """

    def __init__(self, name: str, config: dict[str, Any]) -> None:
        self.name = name
        self.config = config
        self._running = False
        self._on_event: EventHandler | None = None
        self._dry_run: bool = bool(config.get("dry_run", False))

    def set_event_handler(self, handler: EventHandler) -> None:
        """Register the callback invoked for every lifecycle event."""
        self._on_event = handler

    def _emit(self, event: ChannelEvent, data: dict[str, Any] | None = None) -> None:
        if self._on_event is None:
            logger.debug("%s: dropping %s event (no handler)", self.name, event.value)
            return
        self._on_event(event, data or {})

    async def safe_send(self, chat_id: str, text: str) -> str:
        """Send with dry-run guard.

        Callers use ``safe_send()`` instead of ``send_message()`` so the
        dry-run guard is always applied.
        """
        if self._dry_run:
            logger.info(
                "[DRY RUN] %s would send to '%s': %s",
                self.name,
                chat_id,
                text[:200],
            )
            return f"dry-run-{uuid.uuid4().hex}"
        return await self.send_message(chat_id, text)

    @abstractmethod
    async def start(self) -> None: ...

    @abstractmethod
    async def destroy(self) -> None: ...

    @abstractmethod
    async def get_number_id(self, chat_id: str) -> str | None: ...

    @abstractmethod
    async def send_message(self, chat_id: str, text: str) -> str: ...

    @property
    def is_running(self) -> bool:
        return self._running
