"""
Bridge configuration: orchestrator endpoint and connection timings.

Stored as JSON at ``$DRAWIO_BRIDGE_CONFIG`` or
``~/.drawio-bridge/config.json``. Missing files and missing keys fall back
to the defaults below.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Optional

from drawio_bridge.validation import (
    ValidationError,
    validate_non_empty_string,
    validate_number,
    validate_port,
    validate_string,
)

logger = logging.getLogger("drawio-bridge")

CONFIG_ENV_VAR = "DRAWIO_BRIDGE_CONFIG"
DEFAULT_PORT = 3333


@dataclass
class BridgeConfig:
    """Connection settings for one bridge process."""
    host: str = "localhost"
    port: int = DEFAULT_PORT
    reconnect_delay: float = 3.0      # Fixed delay between reconnect attempts
    heartbeat_interval: float = 25.0  # Seconds between __ping messages
    session_selector: str = "*"       # fnmatch pattern over session URLs
    request_timeout: float = 30.0     # Loopback MCP tools only

    def __post_init__(self) -> None:
        self.host = validate_non_empty_string(self.host, "host")
        self.port = validate_port(self.port)
        validate_string(self.session_selector, "session_selector", allow_empty=False)
        validate_number(self.reconnect_delay, "reconnect_delay", min_val=0)
        validate_number(self.heartbeat_interval, "heartbeat_interval", min_val=0.001)
        validate_number(self.request_timeout, "request_timeout", min_val=0.001)

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"


def default_config_path() -> Path:
    env = os.environ.get(CONFIG_ENV_VAR)
    if env:
        return Path(env)
    return Path.home() / ".drawio-bridge" / "config.json"


def load_config(path: Optional[Path] = None) -> BridgeConfig:
    """Read the config file; a missing or unreadable file yields defaults."""
    path = path or default_config_path()
    if not path.exists():
        return BridgeConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Could not read config %s (%s), using defaults", path, exc)
        return BridgeConfig()
    if not isinstance(data, dict):
        logger.warning("Config %s is not a JSON object, using defaults", path)
        return BridgeConfig()
    known = {f.name for f in fields(BridgeConfig)}
    try:
        return BridgeConfig(**{k: v for k, v in data.items() if k in known})
    except ValidationError as exc:
        logger.warning("Invalid config %s: %s, using defaults", path, exc.message)
        return BridgeConfig()


def save_config(config: BridgeConfig, path: Optional[Path] = None) -> Path:
    path = path or default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(config), indent=2), encoding="utf-8")
    return path
