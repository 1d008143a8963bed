"""
Bridge configuration.

Settings come from a JSON file (``appsettings.json`` by default) and may be
overridden from the command line. Keys:

- ``OpenTrackIp`` / ``OpenTrackPort``: tracking-source bind address (required)
- ``DSUServerIp`` / ``DSUServerPort``: DSU bind address (required unless debug)
- ``DebugOpenTrack``: disable the DSU side and print raw samples
- ``RelativeTransform``: send per-second rates (default) or absolute values
- ``DivideByGravity``: accepted for compatibility, not applied
- ``SessionTimeoutSeconds``: DSU client idle timeout (default 5)
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from .sessions import DEFAULT_SESSION_TIMEOUT


DEFAULT_CONFIG_FILE = "appsettings.json"
DEFAULT_TRACKING_PORT = 4242
DEFAULT_DSU_PORT = 26760


class ConfigError(ValueError):
    """Missing or invalid configuration."""


@dataclass
class BridgeConfig:
    tracking_host: str
    tracking_port: int
    dsu_host: str | None = None
    dsu_port: int | None = None
    debug: bool = False
    relative_transform: bool = True
    gravity_adjust: bool = False
    session_timeout: float = DEFAULT_SESSION_TIMEOUT

    def validate(self) -> "BridgeConfig":
        _check_port("OpenTrackPort", self.tracking_port)
        if not self.debug:
            if not self.dsu_host:
                raise ConfigError("DSUServerIp configuration is not found or invalid")
            if self.dsu_port is None:
                raise ConfigError("DSUServerPort configuration is not found or invalid")
            _check_port("DSUServerPort", self.dsu_port)
        if self.session_timeout <= 0:
            raise ConfigError("SessionTimeoutSeconds must be positive")
        return self


def _check_port(name: str, port: int) -> None:
    if port < 0 or port > 65535:
        raise ConfigError(f"{name} out of range: {port}")


def parse_endpoint(value: str) -> tuple[str, int]:
    """Parse ``host:port`` (IPv6 hosts in brackets)."""
    raw = value.strip()
    if not raw:
        raise ValueError("endpoint is empty")

    if raw.startswith("["):
        close = raw.find("]")
        if close < 0:
            raise ValueError("endpoint: missing closing ']' for ipv6")
        host = raw[1:close]
        rest = raw[close + 1:]
        if not rest.startswith(":"):
            raise ValueError("endpoint: expected :port after ]")
        port_str = rest[1:]
    else:
        if ":" not in raw:
            raise ValueError("endpoint: expected host:port")
        host, port_str = raw.rsplit(":", 1)

    host = host.strip()
    port_str = port_str.strip()
    if not host:
        raise ValueError("endpoint: host is empty")

    try:
        port = int(port_str)
    except ValueError as exc:
        raise ValueError("endpoint: port must be integer") from exc
    if port <= 0 or port > 65535:
        raise ValueError("endpoint: port out of range")

    return host, port


def _get_str(settings: Mapping[str, Any], key: str) -> str | None:
    value = settings.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{key} configuration is not found or invalid")
    return value.strip()


def _get_int(settings: Mapping[str, Any], key: str) -> int | None:
    value = settings.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigError(f"{key} configuration is not found or invalid")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} configuration is not found or invalid") from exc


def _get_bool(settings: Mapping[str, Any], key: str, default: bool) -> bool:
    value = settings.get(key, default)
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise ConfigError(f"{key} must be true or false")


def config_from_mapping(settings: Mapping[str, Any], validate: bool = True) -> BridgeConfig:
    """Build a BridgeConfig from an appsettings-style mapping."""
    tracking_host = _get_str(settings, "OpenTrackIp")
    if tracking_host is None:
        raise ConfigError("OpenTrackIp configuration is not found or invalid")
    tracking_port = _get_int(settings, "OpenTrackPort")
    if tracking_port is None:
        raise ConfigError("OpenTrackPort configuration is not found or invalid")

    timeout = settings.get("SessionTimeoutSeconds", DEFAULT_SESSION_TIMEOUT)
    try:
        session_timeout = float(timeout)
    except (TypeError, ValueError) as exc:
        raise ConfigError("SessionTimeoutSeconds must be a number") from exc

    config = BridgeConfig(
        tracking_host=tracking_host,
        tracking_port=tracking_port,
        dsu_host=_get_str(settings, "DSUServerIp"),
        dsu_port=_get_int(settings, "DSUServerPort"),
        debug=_get_bool(settings, "DebugOpenTrack", False),
        relative_transform=_get_bool(settings, "RelativeTransform", True),
        gravity_adjust=_get_bool(settings, "DivideByGravity", False),
        session_timeout=session_timeout,
    )
    return config.validate() if validate else config


def load_config(path: str | Path = DEFAULT_CONFIG_FILE, validate: bool = True) -> BridgeConfig:
    """
    Load settings from a JSON file.

    Raises:
        ConfigError: If the file is missing, not valid JSON, or incomplete
    """
    config_path = Path(path)
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            settings = json.load(f)
    except FileNotFoundError as exc:
        raise ConfigError(f"configuration file not found: {config_path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"invalid JSON in {config_path}: {exc}") from exc

    if not isinstance(settings, dict):
        raise ConfigError(f"{config_path} must contain a JSON object")
    return config_from_mapping(settings, validate=validate)
