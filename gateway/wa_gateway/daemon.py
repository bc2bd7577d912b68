"""Main gateway daemon: wires the channel, state machine and HTTP server."""

from __future__ import annotations

import logging
from typing import Any

from aiohttp import web

from .channels.base import ChannelClient
from .channels.whatsapp import WhatsAppBridgeClient
from .config import load_config
from .ratelimit import RateLimiter
from .sender import SendGateway
from .server import create_app
from .state import ClientFactory, ConnectionStateMachine
from .status import StatusReporter

logger = logging.getLogger(__name__)


class GatewayDaemon:
    """Top-level daemon that owns every component for the process lifetime."""

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.config: dict[str, Any] = config if config is not None else load_config()
        wa_config = self.config.get("whatsapp", {})

        self.machine = ConnectionStateMachine(
            client_factory or self._default_client_factory,
            wa_config,
        )
        self.limiter = RateLimiter(self.config.get("rate_limit", {}))
        self.sender = SendGateway(self.machine)
        self.reporter = StatusReporter(
            self.machine,
            environment=self.config.get("environment", "development"),
        )
        self.app = create_app(
            self.config, self.machine, self.limiter, self.sender, self.reporter
        )
        self._runner: web.AppRunner | None = None
        self._running = False

    def _default_client_factory(self) -> ChannelClient:
        return WhatsAppBridgeClient("whatsapp", self.config.get("whatsapp", {}))

    @property
    def is_running(self) -> bool:
        return self._running

    # ---- lifecycle ----

    async def start(self) -> None:
        """Start the HTTP server, then initialize the WhatsApp client."""
        server_cfg = self.config["server"]
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, server_cfg["host"], int(server_cfg["port"]))
        await site.start()
        self._running = True
        logger.info(
            "WhatsApp gateway started on %s:%s (environment=%s)",
            server_cfg["host"],
            server_cfg["port"],
            self.config.get("environment"),
        )

        self.machine.initialize()

    async def stop(self) -> None:
        """Gracefully shut down: stop serving, then destroy the client."""
        if not self._running and self._runner is None:
            return
        logger.info("Stopping WhatsApp gateway")
        self._running = False

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        await self.machine.shutdown()
        logger.info("WhatsApp gateway stopped")
