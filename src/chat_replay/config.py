"""Configuration loading and management."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

DEFAULT_SOCKET_NAME = "MPVControllPipe"


@dataclass
class PlayerConfig:
    socket_name: str = DEFAULT_SOCKET_NAME


@dataclass
class SyncConfig:
    num_messages_on_refresh: int = 30
    poll_interval_seconds: float = 2.0
    isolate_subscriber_errors: bool = False


@dataclass
class LoggingConfig:
    log_dir: Path = field(default_factory=lambda: Path.home() / "chat-replay" / "logs")
    level: int = logging.INFO


@dataclass
class Config:
    player: PlayerConfig = field(default_factory=PlayerConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def expand_env_var(value: str) -> str:
    """Expand environment variables in string (e.g. ${VAR})."""
    if value.startswith("${") and value.endswith("}"):
        env_var = value[2:-1]
        return os.environ.get(env_var, value)
    return value


def expand_path(path_str: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expandvars(os.path.expanduser(path_str)))


def parse_level(value: str | int) -> int:
    """Convert a level name like 'debug' to its logging constant."""
    if isinstance(value, int):
        return value
    level = logging.getLevelName(value.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {value}")
    return level


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file."""
    if config_path is None:
        # Look for config in standard locations
        search_paths = [
            Path.cwd() / "config.yaml",
            Path.home() / ".config" / "chat-replay" / "config.yaml",
            Path("/etc/chat-replay/config.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = path
                break

    if config_path is None or not config_path.exists():
        return Config()

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    player_data = data.get("player", {})
    player = PlayerConfig(
        socket_name=expand_env_var(str(player_data.get("socket_name", DEFAULT_SOCKET_NAME))),
    )

    sync_data = data.get("sync", {})
    sync = SyncConfig(
        num_messages_on_refresh=int(sync_data.get("num_messages_on_refresh", 30)),
        poll_interval_seconds=float(sync_data.get("poll_interval_seconds", 2.0)),
        isolate_subscriber_errors=bool(sync_data.get("isolate_subscriber_errors", False)),
    )

    logging_data = data.get("logging", {})
    log_config = LoggingConfig(
        log_dir=expand_path(logging_data.get("log_dir", "~/chat-replay/logs")),
        level=parse_level(logging_data.get("level", "INFO")),
    )

    return Config(player=player, sync=sync, logging=log_config)
