"""Gateway configuration: defaults, optional YAML file, environment overrides."""

from __future__ import annotations

import copy
import logging
import os
import re
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULTS: dict[str, Any] = {
    "environment": "development",
    "server": {
        "host": "0.0.0.0",
        "port": 3000,
        "request_size_limit": "10mb",
        "cors_origin": "*",
        "security_headers": True,
    },
    "rate_limit": {
        "window_ms": 15 * 60 * 1000,
        "max_requests": 100,
    },
    "whatsapp": {
        "session_path": "./whatsapp-session",
        "client_id": "whatsapp-gateway",
        "node_path": None,
        "qr_file": None,
        "call_timeout_ms": 30000,
        "dry_run": False,
        "reconnect": {
            "delay_ms": 5000,
            "backoff_factor": 1.0,
            "max_delay_ms": 300_000,
            "max_attempts": 0,
        },
    },
    "logging": {
        "level": "INFO",
        "dir": "./logs",
    },
}


def parse_bool(value: str) -> bool:
    return value.strip().lower() not in ("", "0", "false", "no", "off")


_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(b|kb|mb|gb)?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"b": 1, "kb": 1024, "mb": 1024**2, "gb": 1024**3}


def parse_size(value: str | int) -> int:
    """Parse a body size such as ``"10mb"`` or ``512`` into bytes."""
    if isinstance(value, int):
        return value
    match = _SIZE_RE.match(value)
    if not match:
        raise ValueError(f"Invalid size: {value!r}")
    number, unit = match.groups()
    return int(float(number) * _SIZE_UNITS[(unit or "b").lower()])


# env var -> (config path, converter)
_ENV_OVERRIDES: dict[str, tuple[tuple[str, ...], Callable[[str], Any]]] = {
    "APP_ENV": (("environment",), str),
    "HOST": (("server", "host"), str),
    "PORT": (("server", "port"), int),
    "API_REQUEST_SIZE_LIMIT": (("server", "request_size_limit"), str),
    "CORS_ORIGIN": (("server", "cors_origin"), str),
    "SECURITY_HEADERS_ENABLED": (("server", "security_headers"), parse_bool),
    "API_RATE_LIMIT_WINDOW_MS": (("rate_limit", "window_ms"), int),
    "API_RATE_LIMIT_MAX_REQUESTS": (("rate_limit", "max_requests"), int),
    "WHATSAPP_SESSION_PATH": (("whatsapp", "session_path"), str),
    "WHATSAPP_CLIENT_ID": (("whatsapp", "client_id"), str),
    "WHATSAPP_NODE_PATH": (("whatsapp", "node_path"), str),
    "WHATSAPP_QR_FILE": (("whatsapp", "qr_file"), str),
    "WHATSAPP_CALL_TIMEOUT_MS": (("whatsapp", "call_timeout_ms"), int),
    "WHATSAPP_DRY_RUN": (("whatsapp", "dry_run"), parse_bool),
    "WHATSAPP_RECONNECT_DELAY_MS": (("whatsapp", "reconnect", "delay_ms"), int),
    "WHATSAPP_RECONNECT_BACKOFF": (("whatsapp", "reconnect", "backoff_factor"), float),
    "WHATSAPP_RECONNECT_MAX_DELAY_MS": (("whatsapp", "reconnect", "max_delay_ms"), int),
    "WHATSAPP_RECONNECT_MAX_ATTEMPTS": (("whatsapp", "reconnect", "max_attempts"), int),
    "LOG_LEVEL": (("logging", "level"), str.upper),
    "LOG_DIR": (("logging", "dir"), str),
}


def _merge(base: dict[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``overrides`` into ``base`` (override keys win)."""
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def _set_path(config: dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    node = config
    for key in path[:-1]:
        node = node.setdefault(key, {})
    node[path[-1]] = value


def _load_file(config_path: str) -> dict[str, Any]:
    path = Path(config_path).expanduser()
    if not path.exists():
        logger.warning("Config file not found: %s (using defaults)", path)
        return {}
    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


def load_config(
    config_path: str | None = None,
    env: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Build the effective config.

    Precedence, lowest first: built-in defaults, the YAML file at
    ``config_path``, environment variables.
    """
    env = os.environ if env is None else env
    config = copy.deepcopy(DEFAULTS)

    if config_path:
        _merge(config, _load_file(config_path))

    for name, (path, convert) in _ENV_OVERRIDES.items():
        raw = env.get(name)
        if raw is None or raw == "":
            continue
        try:
            _set_path(config, path, convert(raw))
        except ValueError as exc:
            raise ValueError(f"Invalid value for {name}: {raw!r}") from exc

    config["server"]["request_size_limit"] = parse_size(config["server"]["request_size_limit"])
    return config


def is_development(config: Mapping[str, Any]) -> bool:
    return str(config.get("environment", "development")).lower() == "development"


def is_production(config: Mapping[str, Any]) -> bool:
    return str(config.get("environment", "development")).lower() == "production"
