"""Normalizer for structured chat records.

Structured transcripts are JSON arrays of records shaped like:
    {
        "content": "hello",
        "channel_id": "12345",
        "author_displayname": "alice",
        "color": "#FF0000",
        "emotes": [{"_id": "25", "begin": 0, "end": 4}],
        "badges": [{"_id": "subscriber", "version": "12"}],
        "datetime": "2020-01-01T10:00:05Z",
        "offset": 5.0
    }

``offset`` is already in seconds and is used directly as the message time.
The same record shape is pushed by the player connection in live mode.
"""

import json
from collections.abc import Mapping
from pathlib import Path

from chat_replay.errors import RecordParseError
from chat_replay.normalizer.base import (
    ChatMessage,
    ChatTags,
    Normalizer,
    aggregate_badges,
    aggregate_emotes,
)


class RecordNormalizer(Normalizer):
    """Normalizer for structured (.json) chat records."""

    format_name = "records"
    extensions = (".json",)

    def parse(self, path: Path) -> list[ChatMessage]:
        """Parse a JSON record file into chat messages.

        Raises:
            RecordParseError: If the file is not a valid record array
        """
        try:
            payload = path.read_bytes().decode("utf-8")
        except UnicodeDecodeError as e:
            raise RecordParseError(f"invalid UTF-8 in {path}: {e}") from e
        return self.parse_payload(payload)

    def parse_payload(self, payload: str | bytes | list) -> list[ChatMessage]:
        """Parse a JSON document or an already-decoded record list.

        Raises:
            RecordParseError: If the payload is malformed
        """
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as e:
                raise RecordParseError(f"invalid JSON: {e}") from e

        if not isinstance(payload, list):
            raise RecordParseError(f"expected a JSON array of records, got {type(payload).__name__}")

        return [self.record_to_message(record, index) for index, record in enumerate(payload)]

    def record_to_message(self, record: Mapping, index: int = 0) -> ChatMessage:
        """Convert one raw record to a ChatMessage.

        Raises:
            RecordParseError: If required fields are missing or mistyped
        """
        if not isinstance(record, Mapping):
            raise RecordParseError(f"record {index}: expected an object, got {type(record).__name__}")

        offset = record.get("offset")
        if isinstance(offset, bool) or not isinstance(offset, (int, float)):
            raise RecordParseError(f"record {index}: 'offset' must be a number, got {offset!r}")

        try:
            emotes = aggregate_emotes(record.get("emotes") or [])
            badges = aggregate_badges(record.get("badges") or [])
        except (KeyError, TypeError) as e:
            raise RecordParseError(f"record {index}: malformed emotes/badges: {e!r}") from e

        channel_id = record.get("channel_id")
        color = record.get("color")

        return ChatMessage(
            time=float(offset),
            content=str(record.get("content") or ""),
            tags=ChatTags(
                username=str(record.get("author_displayname") or ""),
                color=str(color) if color is not None else None,
                emotes=emotes,
                badges=badges,
            ),
            channel_id=str(channel_id) if channel_id is not None else None,
        )
