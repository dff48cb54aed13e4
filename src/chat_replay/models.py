"""Canonical data models."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ChatTags:
    """Author annotations attached to a chat message."""

    username: str
    color: str | None = None
    emotes: dict[str, list[str]] = field(default_factory=dict)  # id -> ["begin-end", ...]
    badges: dict[str, str] = field(default_factory=dict)  # id -> version


@dataclass(frozen=True)
class ChatMessage:
    """A normalized chat message from any transcript source."""

    time: float  # Seconds since the start of the session
    content: str
    tags: ChatTags
    channel_id: str | None = None  # Only set for structured records

    @property
    def username(self) -> str:
        return self.tags.username
