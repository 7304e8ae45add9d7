"""Client configuration (YAML file + environment)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

from .connection import DEFAULT_ADDRESS, RETRY_DELAY

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "redis-tui.yaml"
ADDRESS_ENV_VAR = "REDIS_TUI_ADDRESS"


@dataclass
class ClientConfig:
    """Settings for one client run."""
    address: str = DEFAULT_ADDRESS
    retry_delay: float = RETRY_DELAY
    connect_timeout: Optional[float] = None
    exit_on_connect_failure: bool = False
    scan_match: str = "*"
    scan_count: Optional[int] = None
    log_file: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict) -> "ClientConfig":
        """Build from the nested YAML layout; missing keys keep defaults."""
        server = data.get("server") or {}
        client = data.get("client") or {}
        explore = data.get("explore") or {}
        log = data.get("logging") or {}

        config = cls()
        config.address = os.environ.get(ADDRESS_ENV_VAR) or server.get("address", config.address)
        config.retry_delay = float(client.get("retry_delay", config.retry_delay))
        if client.get("connect_timeout") is not None:
            config.connect_timeout = float(client["connect_timeout"])
        config.exit_on_connect_failure = bool(client.get("exit_on_connect_failure", False))
        config.scan_match = str(explore.get("match", config.scan_match))
        if explore.get("count") is not None:
            config.scan_count = int(explore["count"])
        config.log_file = log.get("file", config.log_file)
        config.log_level = str(log.get("level", config.log_level)).upper()
        return config


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> dict:
    """Load configuration from YAML file."""
    path = Path(config_path).expanduser()

    if not path.exists():
        logger.warning(f"Config file not found: {config_path}, using defaults")
        return {}

    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")
    return data
