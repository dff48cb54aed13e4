"""Normalizers for the supported chat transcript encodings."""

from pathlib import Path

from chat_replay.errors import RecordParseError, SourceAccessError
from chat_replay.logging import get_logger

from .base import (
    ChatMessage,
    ChatTags,
    Normalizer,
    NormalizerRegistry,
    aggregate_badges,
    aggregate_emotes,
    find_order_violation,
)
from .records import RecordNormalizer
from .transcript import TranscriptNormalizer

__all__ = [
    "LIVE_SOURCE",
    "ChatMessage",
    "ChatTags",
    "Normalizer",
    "NormalizerRegistry",
    "RecordNormalizer",
    "TranscriptNormalizer",
    "aggregate_badges",
    "aggregate_emotes",
    "find_order_violation",
    "is_live_source",
    "normalize_records",
    "normalize_source",
]

logger = get_logger("normalizer")

# Passing this token as the transcript source selects live mode
LIVE_SOURCE = "ondemand"

# Register normalizers
NormalizerRegistry.register(TranscriptNormalizer())
NormalizerRegistry.register(RecordNormalizer())


def is_live_source(source: str | Path) -> bool:
    """Check whether a transcript source is the live-mode sentinel."""
    return str(source) == LIVE_SOURCE


def normalize_source(source: str | Path, fmt: str | None = None) -> list[ChatMessage]:
    """Load a transcript file into an ordered list of chat messages.

    The encoding is chosen by ``fmt`` if given, otherwise by file extension.
    Plain-text parse errors are fatal; structured parse errors are logged
    and yield an empty list.

    Args:
        source: Path to the transcript
        fmt: Explicit format name ('transcript' or 'records')

    Returns:
        Messages in source order

    Raises:
        SourceAccessError: If the file cannot be read
        TranscriptParseError: If a plain-text line is malformed
        ValueError: If no normalizer handles the source
    """
    path = Path(source)

    if fmt is not None:
        normalizer = NormalizerRegistry.get(fmt)
        if normalizer is None:
            raise ValueError(f"Unknown transcript format: {fmt}")
    else:
        normalizer = NormalizerRegistry.for_path(path)
        if normalizer is None:
            raise ValueError(f"Unsupported transcript extension: {path.suffix or path.name}")

    try:
        messages = normalizer.parse(path)
    except RecordParseError:
        logger.exception("Failed to parse records, continuing without messages: path=%s", path)
        return []
    except OSError as e:
        raise SourceAccessError(f"Cannot read transcript {path}: {e}") from e

    _warn_if_unordered(messages, str(path))
    logger.info("Loaded transcript: path=%s format=%s messages=%d", path, normalizer.format_name, len(messages))
    return messages


def normalize_records(payload: str | bytes | list, after: float | None = None) -> list[ChatMessage]:
    """Normalize a live batch of structured records.

    Malformed payloads are logged and produce an empty list.

    Args:
        payload: JSON text or decoded list of records
        after: Time of the last message already stored, for the ordering check

    Returns:
        Messages in source order
    """
    normalizer = NormalizerRegistry.get(RecordNormalizer.format_name) or RecordNormalizer()
    try:
        messages = normalizer.parse_payload(payload)
    except RecordParseError:
        logger.exception("Dropping malformed live record batch")
        return []

    _warn_if_unordered(messages, "live batch", after)
    return messages


def _warn_if_unordered(messages: list[ChatMessage], origin: str, after: float | None = None) -> None:
    violation = find_order_violation(messages, after)
    if violation is not None:
        logger.warning(
            "Messages are not in ascending time order: origin=%s index=%d time=%s",
            origin,
            violation,
            messages[violation].time,
        )
