"""Logging setup: console text output plus JSON-line log files."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from pythonjsonlogger.json import JsonFormatter

SERVICE = "whatsapp-gateway"
CONSOLE_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

FIELD_RENAME_MAP = {
    "levelname": "level",
    "name": "logger",
}


def create_json_formatter() -> JsonFormatter:
    """One JSON object per line; ``extra`` fields are merged in."""
    return JsonFormatter(
        "%(levelname)s %(name)s %(message)s",
        rename_fields=FIELD_RENAME_MAP,
        static_fields={"service": SERVICE},
        timestamp=True,
    )


def setup_logging(
    level: str = "INFO",
    log_dir: str | None = "./logs",
    console: bool = True,
) -> None:
    """Configure the root logger.

    ``app.log`` receives every record at ``level`` and above, ``error.log``
    only errors.  The console handler is skipped in production.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    if console:
        stream = logging.StreamHandler(sys.stderr)
        stream.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        root.addHandler(stream)

    if log_dir:
        path = Path(log_dir).expanduser()
        path.mkdir(parents=True, exist_ok=True)

        app_file = logging.FileHandler(path / "app.log", encoding="utf-8")
        app_file.setFormatter(create_json_formatter())
        root.addHandler(app_file)

        error_file = logging.FileHandler(path / "error.log", encoding="utf-8")
        error_file.setLevel(logging.ERROR)
        error_file.setFormatter(create_json_formatter())
        root.addHandler(error_file)

    # aiohttp's own access log duplicates the request logging middleware.
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
