"""WhatsApp channel client using whatsapp-web.js via a Node.js bridge.

Spawns a Node.js subprocess running whatsapp_bridge.js which handles
the WhatsApp Web connection (QR code auth, session persistence, sends).
Communication is via JSON lines on stdin/stdout.

Bridge -> gateway events::

    {"type": "qr", "data": {"qr": "..."}}
    {"type": "authenticated"}
    {"type": "auth_failure", "data": {"message": "..."}}
    {"type": "ready", "data": {"phone": "..."}}
    {"type": "disconnected", "data": {"reason": "..."}}
    {"type": "error", "data": {"message": "..."}}
    {"type": "message_create", "data": {"to": "...", "id": "...", "type": "chat"}}
    {"type": "response", "id": 7, "ok": true, "result": ...}

Gateway -> bridge commands::

    {"type": "get_number_id", "id": 7, "data": {"chatId": "..."}}
    {"type": "send", "id": 8, "data": {"chatId": "...", "text": "..."}}
    {"type": "shutdown"}

Config keys:
    session_path: Session persistence directory (default ``./whatsapp-session``)
    client_id: LocalAuth client id (default ``whatsapp-gateway``)
    node_path: Path to node binary (default: found via ``shutil.which``)
    call_timeout_ms: Upper bound for a single bridge call (default ``30000``)
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any

from ..errors import ChannelError, ChannelTimeout, ChannelUnavailable
from ..models import ChannelEvent
from .base import ChannelClient

logger = logging.getLogger(__name__)

_BRIDGE_SCRIPT = Path(__file__).parent / "whatsapp_bridge.js"

# Bridge event type -> lifecycle event
_LIFECYCLE_EVENTS: dict[str, ChannelEvent] = {
    "qr": ChannelEvent.QR,
    "authenticated": ChannelEvent.AUTHENTICATED,
    "auth_failure": ChannelEvent.AUTH_FAILURE,
    "ready": ChannelEvent.READY,
    "disconnected": ChannelEvent.DISCONNECTED,
    "error": ChannelEvent.ERROR,
}


class WhatsAppBridgeClient(ChannelClient):
    """WhatsApp client backed by whatsapp-web.js.

    Authentication is via QR code scan; the session is persisted by the
    bridge under ``session_path`` so restarts do not need a new scan.
    """

    def __init__(self, name: str, config: dict[str, Any]) -> None:
        super().__init__(name, config)

        self._session_path = str(config.get("session_path", "./whatsapp-session"))
        self._client_id = str(config.get("client_id", "whatsapp-gateway"))
        self._node_path = config.get("node_path") or shutil.which("node")
        self._call_timeout = int(config.get("call_timeout_ms", 30000)) / 1000

        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._request_ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[Any]] = {}

    # ---- lifecycle ----

    async def start(self) -> None:
        if not self._node_path:
            raise ChannelUnavailable(
                "node not found. Install Node.js and ensure 'node' is on PATH."
            )

        if not _BRIDGE_SCRIPT.exists():
            raise ChannelUnavailable(f"bridge script not found at {_BRIDGE_SCRIPT}")

        pkg_dir = _BRIDGE_SCRIPT.parent
        if not (pkg_dir / "node_modules" / "whatsapp-web.js").exists():
            raise ChannelUnavailable(f"node_modules not found. Run 'npm install' in {pkg_dir}")

        env = {
            **os.environ,
            "WHATSAPP_SESSION_PATH": self._session_path,
            "WHATSAPP_CLIENT_ID": self._client_id,
        }

        self._process = await asyncio.create_subprocess_exec(
            self._node_path,
            str(_BRIDGE_SCRIPT),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )

        self._running = True
        self._reader_task = asyncio.create_task(self._read_stdout())
        self._stderr_task = asyncio.create_task(self._read_stderr())

        logger.info(
            "WhatsAppBridgeClient '%s' started (pid=%s, session=%s, client_id=%s)",
            self.name,
            self._process.pid,
            self._session_path,
            self._client_id,
        )

    async def destroy(self) -> None:
        self._running = False

        if self._process and self._process.stdin:
            try:
                self._write_cmd({"type": "shutdown"})
                await asyncio.wait_for(self._process.wait(), timeout=10)
            except (asyncio.TimeoutError, ProcessLookupError):
                self._process.kill()
            except Exception:
                logger.exception("Error during WhatsApp bridge shutdown")

        for task in (self._reader_task, self._stderr_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._fail_pending(ChannelError("WhatsApp client destroyed"))
        self._process = None
        self._reader_task = None
        self._stderr_task = None
        logger.info("WhatsAppBridgeClient '%s' destroyed", self.name)

    # ---- channel calls ----

    async def get_number_id(self, chat_id: str) -> str | None:
        result = await self._request("get_number_id", {"chatId": chat_id})
        return result or None

    async def send_message(self, chat_id: str, text: str) -> str:
        result = await self._request("send", {"chatId": chat_id, "text": text})
        if not isinstance(result, dict) or not result.get("id"):
            raise ChannelError(f"bridge returned no message id: {result!r}")
        return str(result["id"])

    # ---- bridge communication ----

    def _write_cmd(self, cmd: dict[str, Any]) -> None:
        """Send a JSON-line command to the bridge's stdin."""
        if self._process and self._process.stdin:
            line = json.dumps(cmd) + "\n"
            self._process.stdin.write(line.encode())

    async def _request(self, command: str, data: dict[str, Any]) -> Any:
        if not self._process or not self._process.stdin or not self._running:
            raise ChannelError("WhatsApp bridge is not running")

        request_id = next(self._request_ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            self._write_cmd({"type": command, "id": request_id, "data": data})
            return await asyncio.wait_for(future, timeout=self._call_timeout)
        except asyncio.TimeoutError:
            raise ChannelTimeout(
                f"{command} timed out after {self._call_timeout:g}s"
            ) from None
        finally:
            self._pending.pop(request_id, None)

    def _fail_pending(self, exc: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(exc)
        self._pending.clear()

    async def _read_stdout(self) -> None:
        """Read JSON lines from bridge stdout and dispatch."""
        assert self._process and self._process.stdout
        while self._running:
            try:
                raw = await self._process.stdout.readline()
                if not raw:
                    break
                line = raw.decode().strip()
                if not line:
                    continue
                self._handle_bridge_event(json.loads(line))
            except json.JSONDecodeError:
                logger.warning("Invalid JSON from bridge: %s", raw[:200])
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error reading from WhatsApp bridge")

        # Process exited
        if self._running:
            logger.warning("WhatsApp bridge process exited unexpectedly")
            self._running = False
            self._fail_pending(ChannelError("WhatsApp bridge exited"))
            self._emit(ChannelEvent.DISCONNECTED, {"reason": "bridge exited"})

    async def _read_stderr(self) -> None:
        """Forward bridge stderr to Python logging."""
        assert self._process and self._process.stderr
        while self._running:
            try:
                raw = await self._process.stderr.readline()
                if not raw:
                    break
                line = raw.decode().strip()
                if line:
                    logger.info("[whatsapp-bridge] %s", line)
            except asyncio.CancelledError:
                break
            except Exception:
                break

    def _handle_bridge_event(self, event: dict[str, Any]) -> None:
        """Dispatch an event from the bridge."""
        event_type = event.get("type", "")
        data = event.get("data") or {}

        if event_type == "response":
            self._resolve(event)

        elif event_type == "message_create":
            logger.info(
                "Message sent (to=%s, id=%s, type=%s)",
                data.get("to"),
                data.get("id"),
                data.get("type"),
            )

        elif event_type in _LIFECYCLE_EVENTS:
            lifecycle = _LIFECYCLE_EVENTS[event_type]
            if lifecycle == ChannelEvent.DISCONNECTED:
                self._fail_pending(ChannelError("WhatsApp client disconnected"))
            self._emit(lifecycle, data)

        else:
            logger.debug("Ignoring unknown bridge event '%s'", event_type)

    def _resolve(self, event: dict[str, Any]) -> None:
        future = self._pending.get(event.get("id"))
        if future is None or future.done():
            logger.debug("Dropping response for unknown request id %s", event.get("id"))
            return
        if event.get("ok"):
            future.set_result(event.get("result"))
        else:
            future.set_exception(ChannelError(str(event.get("error", "unknown bridge error"))))
