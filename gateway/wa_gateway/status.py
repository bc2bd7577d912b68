"""Service info, status and health payloads."""

from __future__ import annotations

import time
from typing import Any

import psutil

from .models import ChannelState, utcnow_iso
from .state import ConnectionStateMachine

SERVICE_NAME = "WhatsApp Gateway Service"
VERSION = "1.0.0"
MEMORY_WARNING_BYTES = 500 * 1024 * 1024

ENDPOINTS = {
    "send": "POST /send-whatsapp",
    "status": "GET /status",
    "health": "GET /health",
    "qr": "GET /qr",
}


class StatusReporter:
    """Read-only view of the gateway for probes and dashboards."""

    def __init__(
        self,
        machine: ConnectionStateMachine,
        environment: str = "development",
        process: psutil.Process | None = None,
    ) -> None:
        self._machine = machine
        self._environment = environment
        self._process = process or psutil.Process()
        self._started = time.monotonic()

    def uptime(self) -> float:
        return round(time.monotonic() - self._started, 3)

    def memory(self) -> dict[str, int]:
        info = self._process.memory_info()
        return {"rss": info.rss, "vms": info.vms}

    def connection_status(self) -> str:
        snapshot = self._machine.snapshot()
        if snapshot.state == ChannelState.READY:
            return "Connected"
        if snapshot.initializing:
            return "Connecting"
        return "Disconnected"

    def service_info(self) -> dict[str, Any]:
        return {
            "service": SERVICE_NAME,
            "version": VERSION,
            "status": self.connection_status(),
            "state": self._machine.state.value,
            "environment": self._environment,
            "uptime": self.uptime(),
            "timestamp": utcnow_iso(),
            "endpoints": ENDPOINTS,
        }

    def status(self) -> dict[str, Any]:
        snapshot = self._machine.snapshot()
        return {
            "success": True,
            "whatsappConnected": snapshot.ready,
            "clientInitializing": snapshot.initializing,
            "state": snapshot.state.value,
            "lastError": snapshot.last_error,
            "uptime": self.uptime(),
            "memory": self.memory(),
            "timestamp": utcnow_iso(),
        }

    def health(self) -> tuple[dict[str, Any], int]:
        """Return the health body and HTTP status.

        A disconnected channel is reported but keeps the status at 200; only
        a failing server check yields 503.
        """
        checks = {
            "server": "ok",
            "whatsapp": "ok" if self._machine.snapshot().ready else "disconnected",
            "memory": "ok" if self.memory()["rss"] < MEMORY_WARNING_BYTES else "warning",
        }
        body = {
            "status": "healthy" if checks["server"] == "ok" else "unhealthy",
            "checks": checks,
            "timestamp": utcnow_iso(),
        }
        return body, 200 if checks["server"] == "ok" else 503
