"""Normalizer for line-oriented chat transcripts.

Each line of a transcript has the shape:
    DD.MM.YYYY HH:MM:SS - username: message text

The first line's timestamp is the zero point of the session; every message's
time is the number of seconds elapsed since it. The time token may carry a
fraction of a second (HH:MM:SS.fff).
"""

from datetime import datetime
from pathlib import Path

from chat_replay.errors import TranscriptParseError
from chat_replay.normalizer.base import ChatMessage, ChatTags, Normalizer


class TranscriptNormalizer(Normalizer):
    """Normalizer for plain-text (.txt) chat transcripts."""

    format_name = "transcript"
    extensions = (".txt",)

    def parse(self, path: Path) -> list[ChatMessage]:
        """Parse a transcript file into chat messages.

        Blank lines are skipped. Any other line that does not match the
        expected shape aborts the whole parse.

        Args:
            path: Path to the .txt transcript

        Returns:
            List of messages, timed relative to the first line

        Raises:
            TranscriptParseError: If a line is malformed or not valid UTF-8
        """
        with open(path, encoding="utf-8") as f:
            try:
                return self.parse_lines(f)
            except UnicodeDecodeError as e:
                raise TranscriptParseError(f"invalid UTF-8 in {path}: {e}") from e

    def parse_lines(self, lines) -> list[ChatMessage]:
        """Parse an iterable of transcript lines."""
        messages: list[ChatMessage] = []
        start: datetime | None = None

        for line_number, raw_line in enumerate(lines, start=1):
            line = raw_line.rstrip("\r\n")
            if not line.strip():
                continue

            timestamp, username, content = self.parse_line(line, line_number)
            if start is None:
                start = timestamp

            messages.append(
                ChatMessage(
                    time=(timestamp - start).total_seconds(),
                    content=content,
                    tags=ChatTags(username=username),
                )
            )

        return messages

    def parse_line(self, line: str, line_number: int | None = None) -> tuple[datetime, str, str]:
        """Split one transcript line into (timestamp, username, content).

        Raises:
            TranscriptParseError: If the line does not match the expected shape
        """
        date_token, _, rest = line.partition(" ")
        time_token = rest.partition(" ")[0]
        timestamp = self._parse_timestamp(date_token, time_token, line_number)

        header, separator, content = line.partition(": ")
        if not separator:
            raise TranscriptParseError(f"missing ': ' separator in {line!r}", line_number)

        _, dash, username = header.partition(" - ")
        if not dash:
            raise TranscriptParseError(f"missing ' - ' before username in {line!r}", line_number)

        return timestamp, username, content

    def _parse_timestamp(self, date_token: str, time_token: str, line_number: int | None) -> datetime:
        try:
            day, month, year = (int(part) for part in date_token.split("."))
            clock, dot, fraction = time_token.partition(".")
            time_parts = [int(part) for part in clock.split(":")]
            if len(time_parts) != 3:
                raise ValueError(f"expected HH:MM:SS, got {time_token!r}")
            hours, minutes, seconds = time_parts
            if dot and not fraction.isdigit():
                raise ValueError(f"invalid fraction of a second in {time_token!r}")
            # Fraction of a second, truncated to microseconds
            microseconds = int(fraction.ljust(6, "0")[:6]) if dot else 0
            return datetime(year, month, day, hours, minutes, seconds, microseconds)
        except ValueError as e:
            raise TranscriptParseError(
                f"invalid timestamp {date_token!r} {time_token!r}: {e}", line_number
            ) from e
