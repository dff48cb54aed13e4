"""Exception types raised by chat-replay."""


class ChatReplayError(Exception):
    """Base class for all chat-replay errors."""


class SourceAccessError(ChatReplayError, OSError):
    """The transcript source could not be read."""


class ParseError(ChatReplayError, ValueError):
    """A transcript source could not be parsed."""


class TranscriptParseError(ParseError):
    """A line of a plain-text transcript is malformed.

    Fatal: aborts the whole load.
    """

    def __init__(self, message: str, line_number: int | None = None) -> None:
        self.line_number = line_number
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)


class RecordParseError(ParseError):
    """A structured (JSON) payload is malformed.

    Non-fatal: logged and treated as an empty load.
    """


class PlayerConnectionError(ChatReplayError, ConnectionError):
    """The player connection could not be established or was lost."""


class PlayerCommandError(ChatReplayError):
    """The player answered a command with an error status."""

    def __init__(self, command: list, error: str) -> None:
        self.command = command
        self.error = error
        super().__init__(f"Player command {command!r} failed: {error}")
