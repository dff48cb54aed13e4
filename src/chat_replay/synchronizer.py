"""Playback synchronization: decides which messages have elapsed.

The synchronizer owns the cursor (``last_message_index``), the exclusive
count of messages already delivered to subscribers. Forward progress emits
the messages between the cursor and the playback position. A seek moves the
cursor back by a replay window, clears the display, and replays up to the
new position so the viewer sees recent context rather than an empty feed.
"""

from chat_replay.events import EventEmitter
from chat_replay.logging import get_logger
from chat_replay.store import MessageStore

logger = get_logger("synchronizer")

DEFAULT_MESSAGES_ON_REFRESH = 30

# Event names published by the synchronizer
MESSAGE_EVENT = "message"
DELETE_EVENT = "delete"


class Synchronizer:
    """Emits message/delete events as the playback position moves."""

    def __init__(
        self,
        store: MessageStore,
        emitter: EventEmitter,
        num_messages_on_refresh: int = DEFAULT_MESSAGES_ON_REFRESH,
    ) -> None:
        if num_messages_on_refresh < 0:
            raise ValueError(f"num_messages_on_refresh must be >= 0, got {num_messages_on_refresh}")
        self.store = store
        self.emitter = emitter
        self.num_messages_on_refresh = num_messages_on_refresh
        self.last_message_index = 0

    def locate(self, time: float) -> int:
        """Binary search the store for a playback time.

        Returns the index of a message whose time equals ``time`` if one is
        hit, otherwise the insertion point (count of messages strictly
        earlier than ``time``). With duplicate times the returned index is not
        guaranteed to be the leftmost match.
        """
        start = 0
        end = len(self.store) - 1

        while start <= end:
            mid = (start + end) // 2
            mid_time = self.store[mid].time
            if mid_time == time:
                return mid
            if mid_time < time:
                start = mid + 1
            else:
                end = mid - 1

        return start

    def advance(self, time: float) -> int:
        """Emit every message that has elapsed since the last call.

        Moving backward (without a seek) is a no-op.

        Returns:
            Number of messages emitted
        """
        index = self.locate(time)
        if index <= self.last_message_index:
            return 0

        first = self.last_message_index
        for i in range(first, index):
            message = self.store[i]
            self.emitter.publish(MESSAGE_EVENT, None, message.tags, message.content)
            # Advance per message so an aborted pass never re-emits what was delivered
            self.last_message_index = i + 1

        return index - first

    def seek(self, time: float) -> int:
        """Clear the display and replay the window leading up to ``time``.

        Returns:
            Number of messages replayed
        """
        index = self.locate(time)
        self.last_message_index = max(0, index - self.num_messages_on_refresh)
        logger.debug(
            "Seek: time=%.3f index=%d replay_from=%d", time, index, self.last_message_index
        )
        self.emitter.publish(DELETE_EVENT)
        return self.advance(time)

    def reset(self) -> None:
        self.last_message_index = 0
