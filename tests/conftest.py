"""Shared test helpers."""

import asyncio

import pytest

from chat_replay.events import EventEmitter
from chat_replay.models import ChatMessage, ChatTags


def make_message(time: float, content: str | None = None, username: str = "viewer") -> ChatMessage:
    """Build a ChatMessage with minimal tags."""
    return ChatMessage(
        time=time,
        content=content if content is not None else f"message at {time}",
        tags=ChatTags(username=username),
    )


class FakeConnection:
    """Stand-in for PlayerConnection.

    In automatic mode get_property() returns ``position`` immediately. In
    manual mode each request parks a future in ``requests`` that the test
    resolves, simulating a slow round trip.
    """

    def __init__(self, position: float | None = 0.0) -> None:
        self.position = position
        self.manual = False
        self.requests: list[asyncio.Future] = []
        self.connected = False
        self.closed = False
        self.connect_error: Exception | None = None
        self._events = EventEmitter()

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def on(self, event, callback) -> None:
        self._events.subscribe(event, callback)

    def off(self, event, callback) -> None:
        self._events.unsubscribe(event, callback)

    def listener_count(self, event: str) -> int:
        return self._events.subscriber_count(event)

    def fire(self, event: str, *args) -> None:
        self._events.publish(event, *args)

    async def get_property(self, name: str):
        if self.manual:
            future = asyncio.get_running_loop().create_future()
            self.requests.append(future)
            return await future
        return self.position

    async def close(self) -> None:
        self.closed = True
        self._events.clear()


class Recorder:
    """Collects synchronizer events as ('message', content) / ('delete',) tuples."""

    def __init__(self, emitter: EventEmitter) -> None:
        self.events: list[tuple] = []
        emitter.subscribe("message", self._on_message)
        emitter.subscribe("delete", self._on_delete)

    def _on_message(self, _metadata, tags, content) -> None:
        self.events.append(("message", content))

    def _on_delete(self) -> None:
        self.events.append(("delete",))

    @property
    def messages(self) -> list[str]:
        return [event[1] for event in self.events if event[0] == "message"]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def fake_connection() -> FakeConnection:
    return FakeConnection()
