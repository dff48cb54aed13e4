"""Logging configuration for chat-replay.

Provides centralized logging setup with file output to ~/chat-replay/logs/.
"""

import logging
import sys
from pathlib import Path

# Default log directory
DEFAULT_LOG_DIR = Path.home() / "chat-replay" / "logs"


def setup_logging(
    name: str,
    log_dir: Path | None = None,
    level: int = logging.INFO,
    console: bool = True,
) -> logging.Logger:
    """Configure logging for a chat-replay component.

    Configures the package logger ``chat_replay`` so that every module logger
    obtained through get_logger() propagates into the same handlers.
    Log files are written to <log_dir>/<name>.log.

    Args:
        name: Component name (used for log filename)
        log_dir: Directory for log files (defaults to ~/chat-replay/logs/)
        level: Logging level (defaults to INFO)
        console: Whether to also log to stderr (defaults to True)

    Returns:
        Configured package logger
    """
    if log_dir is None:
        log_dir = DEFAULT_LOG_DIR

    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("chat_replay")
    logger.setLevel(level)

    # Avoid adding duplicate handlers if already configured
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    file_handler = logging.FileHandler(log_dir / f"{name}.log", encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a chat-replay component.

    Args:
        name: Logger name (will be prefixed with 'chat_replay.')

    Returns:
        Logger instance
    """
    return logging.getLogger(f"chat_replay.{name}")
