"""In-memory ordered message store."""

from collections.abc import Iterable, Iterator

from chat_replay.models import ChatMessage


class MessageStore:
    """Sequence of chat messages kept in ascending time order.

    Batch sources are loaded once before synchronization starts; in live mode
    each pushed batch is appended verbatim. The store never re-sorts, so
    sources must supply messages in non-decreasing time order.
    """

    def __init__(self, messages: Iterable[ChatMessage] = ()) -> None:
        self._messages: list[ChatMessage] = list(messages)

    def extend(self, messages: Iterable[ChatMessage]) -> int:
        """Append a batch of messages.

        Returns:
            Number of messages appended
        """
        before = len(self._messages)
        self._messages.extend(messages)
        return len(self._messages) - before

    def append(self, message: ChatMessage) -> None:
        self._messages.append(message)

    def clear(self) -> None:
        self._messages.clear()

    @property
    def last_time(self) -> float | None:
        """Time of the newest message, or None if empty."""
        if not self._messages:
            return None
        return self._messages[-1].time

    def __len__(self) -> int:
        return len(self._messages)

    def __getitem__(self, index):
        return self._messages[index]

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(self._messages)

    def __bool__(self) -> bool:
        return bool(self._messages)
