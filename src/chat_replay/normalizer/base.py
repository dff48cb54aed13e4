"""Base normalizer interface, registry, and annotation aggregation."""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path

from chat_replay.models import ChatMessage, ChatTags

__all__ = [
    "ChatMessage",
    "ChatTags",
    "Normalizer",
    "NormalizerRegistry",
    "aggregate_badges",
    "aggregate_emotes",
    "find_order_violation",
]


def aggregate_emotes(occurrences: Iterable[Mapping]) -> dict[str, list[str]]:
    """Group raw emote occurrences by identifier.

    Each occurrence carries an ``_id`` and a ``begin``/``end`` character span.
    Spans are collected as ``"begin-end"`` strings in source order.

    Args:
        occurrences: Raw emote records, e.g. ``{"_id": "x", "begin": 0, "end": 3}``

    Returns:
        Mapping of emote id to ordered list of range strings

    Raises:
        KeyError: If an occurrence lacks one of the required keys
    """
    emotes: dict[str, list[str]] = {}
    for occurrence in occurrences:
        emote_id = str(occurrence["_id"])
        emotes.setdefault(emote_id, []).append(f"{occurrence['begin']}-{occurrence['end']}")
    return emotes


def aggregate_badges(occurrences: Iterable[Mapping]) -> dict[str, str]:
    """Group raw badge occurrences by identifier.

    When an identifier repeats, the first occurrence's version is kept.

    Args:
        occurrences: Raw badge records, e.g. ``{"_id": "subscriber", "version": "12"}``

    Returns:
        Mapping of badge id to version string

    Raises:
        KeyError: If an occurrence lacks one of the required keys
    """
    badges: dict[str, str] = {}
    for occurrence in occurrences:
        badge_id = str(occurrence["_id"])
        if badge_id not in badges:
            badges[badge_id] = str(occurrence["version"])
    return badges


def find_order_violation(messages: Sequence[ChatMessage], after: float | None = None) -> int | None:
    """Return the index of the first message that breaks ascending time order.

    Args:
        messages: Messages to check
        after: Time of the message preceding ``messages`` (if any)

    Returns:
        Index of the first out-of-order message, or None if ordered
    """
    previous = after
    for index, message in enumerate(messages):
        if previous is not None and message.time < previous:
            return index
        previous = message.time
    return None


class Normalizer(ABC):
    """Base class for transcript normalizers.

    Subclasses set the ``format_name`` and ``extensions`` class attributes
    and implement ``parse()`` to turn a source file into ChatMessage instances.
    """

    format_name: str
    extensions: tuple[str, ...] = ()

    @abstractmethod
    def parse(self, path: Path) -> list[ChatMessage]:
        """Parse a transcript file into chat messages ordered by time.

        Args:
            path: Path to the transcript file

        Returns:
            List of messages in source order
        """


class NormalizerRegistry:
    """Registry of normalizers by format name and file extension."""

    _normalizers: dict[str, Normalizer] = {}

    @classmethod
    def register(cls, normalizer: Normalizer) -> None:
        """Register a normalizer."""
        cls._normalizers[normalizer.format_name] = normalizer

    @classmethod
    def get(cls, format_name: str) -> Normalizer | None:
        """Get normalizer by format name."""
        return cls._normalizers.get(format_name)

    @classmethod
    def for_path(cls, path: Path) -> Normalizer | None:
        """Get the normalizer handling a file's extension."""
        suffix = path.suffix.lower()
        for normalizer in cls._normalizers.values():
            if suffix in normalizer.extensions:
                return normalizer
        return None

    @classmethod
    def all_formats(cls) -> list[str]:
        """List all registered format names."""
        return list(cls._normalizers.keys())
