"""CLI entry point for the gateway daemon."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any

import aiohttp
from dotenv import load_dotenv

from .config import is_production, load_config
from .daemon import GatewayDaemon
from .logs import setup_logging

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        description="WhatsApp Gateway",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Optional YAML config file (environment variables override it)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: LOG_LEVEL or INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    # start (default)
    sub.add_parser("start", help="Start the gateway")

    # status
    status_p = sub.add_parser("status", help="Query a running gateway")
    status_p.add_argument("--url", default=None, help="Gateway base URL")

    # send
    send_p = sub.add_parser("send", help="Send a message through a running gateway")
    send_p.add_argument("--url", default=None, help="Gateway base URL")
    send_p.add_argument("--number", required=True, help="Recipient phone number")
    send_p.add_argument("--message", required=True, help="Message text")

    return parser


def _base_url(args: argparse.Namespace, config: dict[str, Any]) -> str:
    return (args.url or f"http://localhost:{config['server']['port']}").rstrip("/")


# ---- process-level error handling ----


def _log_async_exception(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    """Log exceptions nobody awaited; the process keeps running."""
    exc = context.get("exception")
    logger.error(
        "Unhandled async error: %s",
        context.get("message", "unknown"),
        exc_info=(type(exc), exc, exc.__traceback__) if exc else None,
    )


def _fail_fast(exc_type, exc, tb) -> None:
    """Log an uncaught exception and exit so the supervisor restarts us."""
    logger.critical("Uncaught exception", exc_info=(exc_type, exc, tb))
    sys.exit(1)


# ---- subcommand handlers ----


def _cmd_start(config: dict[str, Any]) -> None:
    """Run the gateway until SIGINT/SIGTERM."""

    async def _run() -> None:
        loop = asyncio.get_running_loop()
        loop.set_exception_handler(_log_async_exception)
        stop_event = asyncio.Event()

        def _on_signal(sig: signal.Signals) -> None:
            logger.info("%s received, shutting down gracefully", sig.name)
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _on_signal, sig)

        daemon = GatewayDaemon(config)
        try:
            await daemon.start()
            await stop_event.wait()
        finally:
            await daemon.stop()

    asyncio.run(_run())


async def _fetch(method: str, url: str, payload: dict[str, Any] | None = None) -> tuple[int, Any]:
    async with aiohttp.ClientSession() as session:
        async with session.request(method, url, json=payload) as resp:
            return resp.status, await resp.json(content_type=None)


def _cmd_status(args: argparse.Namespace, config: dict[str, Any]) -> None:
    """Print a running gateway's /status."""
    url = _base_url(args, config) + "/status"
    try:
        _, data = asyncio.run(_fetch("GET", url))
    except aiohttp.ClientError as exc:
        print(f"Gateway is not running or not accessible at {url}: {exc}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(data, indent=2))
    if not data.get("whatsappConnected"):
        print("WhatsApp is not connected. Scan the QR code (GET /qr).", file=sys.stderr)
        sys.exit(2)


def _cmd_send(args: argparse.Namespace, config: dict[str, Any]) -> None:
    """Send one message through a running gateway."""
    url = _base_url(args, config) + "/send-whatsapp"
    try:
        status, data = asyncio.run(
            _fetch("POST", url, {"number": args.number, "message": args.message})
        )
    except aiohttp.ClientError as exc:
        print(f"Gateway is not running or not accessible at {url}: {exc}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(data, indent=2))
    if status != 200 or not data.get("success"):
        print("Failed to send message.", file=sys.stderr)
        sys.exit(1)
    print("Message sent.")


# ---- main ----


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    load_dotenv()
    config = load_config(args.config)
    if args.log_level:
        config["logging"]["level"] = args.log_level

    command = args.command or "start"

    if command == "start":
        setup_logging(
            level=config["logging"]["level"],
            log_dir=config["logging"]["dir"],
            console=not is_production(config),
        )
        sys.excepthook = _fail_fast
        _cmd_start(config)
    else:
        logging.basicConfig(
            level=getattr(logging, config["logging"]["level"], logging.INFO),
            format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        )
        if command == "status":
            _cmd_status(args, config)
        elif command == "send":
            _cmd_send(args, config)
        else:
            parser.print_help()


if __name__ == "__main__":
    main()
