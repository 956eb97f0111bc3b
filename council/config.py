"""Configuration loading for the Council client."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class ServerConfig:
    url: str = "http://localhost:3000"
    timeout_seconds: float = 30.0


@dataclass
class SyncConfig:
    """Configuration for the polling sync engine."""

    poll_interval_seconds: float = 1.0


@dataclass
class TurnConfig:
    """Configuration for waiting on a participant's turn."""

    poll_interval_seconds: float = 2.0
    timeout_seconds: int = 300


@dataclass
class Config:
    server: ServerConfig = field(default_factory=ServerConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    turn: TurnConfig = field(default_factory=TurnConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with COUNCIL_ prefix."""
    return os.environ.get(f"COUNCIL_{key}", default)


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Server overrides
    if url := _get_env("SERVER_URL"):
        config.server.url = url
    if timeout := _get_env("SERVER_TIMEOUT"):
        config.server.timeout_seconds = float(timeout)

    # Sync overrides
    if interval := _get_env("POLL_INTERVAL"):
        config.sync.poll_interval_seconds = float(interval)

    # Turn overrides
    if await_interval := _get_env("AWAIT_INTERVAL"):
        config.turn.poll_interval_seconds = float(await_interval)
    if await_timeout := _get_env("AWAIT_TIMEOUT"):
        config.turn.timeout_seconds = int(await_timeout)

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "server" in data:
                server_data = data["server"]
                config.server = ServerConfig(
                    url=server_data.get("url", config.server.url),
                    timeout_seconds=server_data.get(
                        "timeout_seconds", config.server.timeout_seconds
                    ),
                )

            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    poll_interval_seconds=sync_data.get(
                        "poll_interval_seconds", config.sync.poll_interval_seconds
                    ),
                )

            if "turn" in data:
                turn_data = data["turn"]
                config.turn = TurnConfig(
                    poll_interval_seconds=turn_data.get(
                        "poll_interval_seconds", config.turn.poll_interval_seconds
                    ),
                    timeout_seconds=turn_data.get(
                        "timeout_seconds", config.turn.timeout_seconds
                    ),
                )

    return _apply_env_overrides(config)
