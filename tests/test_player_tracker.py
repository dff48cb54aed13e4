"""Tests for the playback tracker."""

import asyncio
import logging

import pytest

from chat_replay.errors import PlayerCommandError, PlayerConnectionError
from chat_replay.events import EventEmitter
from chat_replay.player.tracker import PlaybackTracker
from chat_replay.store import MessageStore
from chat_replay.synchronizer import Synchronizer
from conftest import FakeConnection, Recorder, make_message


def build_tracker(
    connection: FakeConnection,
    times=(0, 5, 10, 15),
    num_messages_on_refresh: int = 30,
    poll_interval: float = 60.0,
    live: bool = False,
    on_close=None,
) -> tuple[PlaybackTracker, Recorder]:
    emitter = EventEmitter()
    recorder = Recorder(emitter)
    store = MessageStore(make_message(t, content=f"m{i}") for i, t in enumerate(times))
    synchronizer = Synchronizer(store, emitter, num_messages_on_refresh)
    tracker = PlaybackTracker(
        connection,
        synchronizer,
        store,
        poll_interval=poll_interval,
        live=live,
        on_close=on_close,
    )
    return tracker, recorder


async def settle() -> None:
    """Let spawned tasks run to completion."""
    for _ in range(5):
        await asyncio.sleep(0)


class TestTrackerStart:
    """Tests for starting the tracker."""

    @pytest.mark.asyncio
    async def test_start_primes_with_seek(self, fake_connection: FakeConnection) -> None:
        """Joining mid-file replays the window instead of flooding from zero."""
        fake_connection.position = 11.0
        tracker, recorder = build_tracker(fake_connection, num_messages_on_refresh=2)

        await tracker.start()
        try:
            assert recorder.events == [("delete",), ("message", "m1"), ("message", "m2")]
            assert tracker.synchronizer.last_message_index == 3
        finally:
            await tracker.stop()

    @pytest.mark.asyncio
    async def test_start_subscribes(self, fake_connection: FakeConnection) -> None:
        tracker, _ = build_tracker(fake_connection)
        await tracker.start()
        try:
            assert fake_connection.listener_count("seek") == 1
            assert fake_connection.listener_count("close") == 1
            assert fake_connection.listener_count("chatmessages") == 0
        finally:
            await tracker.stop()

    @pytest.mark.asyncio
    async def test_live_mode_subscribes_to_records(self, fake_connection: FakeConnection) -> None:
        tracker, _ = build_tracker(fake_connection, live=True)
        await tracker.start()
        try:
            assert fake_connection.listener_count("chatmessages") == 1
        finally:
            await tracker.stop()

    def test_rejects_non_positive_interval(self, fake_connection: FakeConnection) -> None:
        with pytest.raises(ValueError):
            build_tracker(fake_connection, poll_interval=0)


class TestTrackerPolling:
    """Tests for the periodic position poll."""

    @pytest.mark.asyncio
    async def test_tick_advances(self, fake_connection: FakeConnection) -> None:
        tracker, recorder = build_tracker(fake_connection)
        await tracker.start()
        try:
            recorder.clear()
            fake_connection.position = 6.0
            await tracker.handle_tick()
            assert recorder.events == [("message", "m0"), ("message", "m1")]
        finally:
            await tracker.stop()

    @pytest.mark.asyncio
    async def test_ticker_runs_on_interval(self, fake_connection: FakeConnection) -> None:
        fake_connection.position = 0.0
        tracker, recorder = build_tracker(fake_connection, poll_interval=0.01)
        await tracker.start()
        try:
            fake_connection.position = 12.0
            await asyncio.sleep(0.1)
            assert recorder.messages == ["m0", "m1", "m2"]
        finally:
            await tracker.stop()

    @pytest.mark.asyncio
    async def test_unavailable_position_skips_tick(self, fake_connection: FakeConnection) -> None:
        """mpv has no playback-time while idle; the tick is a no-op."""
        tracker, recorder = build_tracker(fake_connection)
        await tracker.start()
        try:
            recorder.clear()
            fake_connection.position = None
            await tracker.handle_tick()
            assert recorder.events == []
        finally:
            await tracker.stop()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            PlayerCommandError(["get_property", "playback-time"], "property unavailable"),
            PlayerConnectionError("gone"),
        ],
    )
    async def test_request_errors_skip_tick(self, fake_connection: FakeConnection, error) -> None:
        tracker, recorder = build_tracker(fake_connection)
        await tracker.start()
        try:
            recorder.clear()

            async def failing_get_property(name: str):
                raise error

            fake_connection.get_property = failing_get_property
            await tracker.handle_tick()
            assert recorder.events == []
        finally:
            await tracker.stop()

    @pytest.mark.asyncio
    async def test_failing_subscriber_is_logged(
        self, fake_connection: FakeConnection, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A subscriber error aborts that pass but not the ticker."""
        tracker, _ = build_tracker(fake_connection, poll_interval=0.01)

        def broken(*_args) -> None:
            raise RuntimeError("renderer crashed")

        await tracker.start()
        try:
            tracker.synchronizer.emitter.subscribe("message", broken)
            fake_connection.position = 6.0
            with caplog.at_level(logging.ERROR, logger="chat_replay"):
                await asyncio.sleep(0.05)
            assert "Tracker task failed" in caplog.text
            assert tracker.running
        finally:
            await tracker.stop()


class TestTrackerSeek:
    """Tests for seek notifications."""

    @pytest.mark.asyncio
    async def test_seek_event(self, fake_connection: FakeConnection) -> None:
        tracker, recorder = build_tracker(fake_connection, num_messages_on_refresh=1)
        await tracker.start()
        try:
            fake_connection.position = 12.0
            await tracker.handle_tick()
            recorder.clear()

            fake_connection.position = 2.0
            fake_connection.fire("seek", {"event": "seek"})
            await settle()

            assert recorder.events == [("delete",), ("message", "m0")]
            assert tracker.synchronizer.last_message_index == 1
        finally:
            await tracker.stop()

    @pytest.mark.asyncio
    async def test_stale_tick_after_seek_is_discarded(self, fake_connection: FakeConnection) -> None:
        """A poll issued before a seek must not move the cursor after it."""
        tracker, recorder = build_tracker(fake_connection, num_messages_on_refresh=1)
        await tracker.start()
        try:
            recorder.clear()
            fake_connection.manual = True

            tick = asyncio.create_task(tracker.handle_tick())
            await settle()
            seek = asyncio.create_task(tracker.handle_seek())
            await settle()
            tick_request, seek_request = fake_connection.requests

            seek_request.set_result(6.0)
            await seek
            tick_request.set_result(20.0)
            await tick

            assert recorder.events == [("delete",), ("message", "m1")]
            assert tracker.synchronizer.last_message_index == 2
        finally:
            await tracker.stop()

    @pytest.mark.asyncio
    async def test_older_seek_is_superseded(self, fake_connection: FakeConnection) -> None:
        tracker, recorder = build_tracker(fake_connection, num_messages_on_refresh=1)
        await tracker.start()
        try:
            recorder.clear()
            fake_connection.manual = True

            first = asyncio.create_task(tracker.handle_seek())
            await settle()
            second = asyncio.create_task(tracker.handle_seek())
            await settle()
            first_request, second_request = fake_connection.requests

            second_request.set_result(11.0)
            await second
            first_request.set_result(1.0)
            await first

            assert recorder.events == [("delete",), ("message", "m2")]
        finally:
            await tracker.stop()

    @pytest.mark.asyncio
    async def test_tick_issued_after_seek_applies(self, fake_connection: FakeConnection) -> None:
        tracker, recorder = build_tracker(fake_connection, num_messages_on_refresh=0)
        await tracker.start()
        try:
            recorder.clear()
            fake_connection.manual = True

            seek = asyncio.create_task(tracker.handle_seek())
            await settle()
            seek_request = fake_connection.requests[0]
            seek_request.set_result(6.0)
            await seek

            tick = asyncio.create_task(tracker.handle_tick())
            await settle()
            fake_connection.requests[1].set_result(11.0)
            await tick

            assert recorder.events == [("delete",), ("message", "m2")]
        finally:
            await tracker.stop()


class TestTrackerTeardown:
    """Tests for stopping the tracker."""

    @pytest.mark.asyncio
    async def test_stop_detaches_and_cancels(self, fake_connection: FakeConnection) -> None:
        tracker, recorder = build_tracker(fake_connection, live=True)
        await tracker.start()
        recorder.clear()

        fake_connection.manual = True
        fake_connection.fire("seek")
        await settle()
        pending = fake_connection.requests[0]

        await tracker.stop()

        assert not tracker.running
        assert pending.cancelled()
        for event in ("seek", "close", "chatmessages"):
            assert fake_connection.listener_count(event) == 0
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_no_publish_after_stop(self, fake_connection: FakeConnection) -> None:
        """A response arriving after teardown is discarded."""
        tracker, recorder = build_tracker(fake_connection)
        await tracker.start()
        recorder.clear()
        fake_connection.manual = True

        tick = asyncio.create_task(tracker.handle_tick())
        await settle()
        await tracker.stop()
        fake_connection.requests[0].set_result(20.0)
        await tick

        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, fake_connection: FakeConnection) -> None:
        tracker, _ = build_tracker(fake_connection)
        await tracker.start()
        await tracker.stop()
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_close_event_runs_callback(self, fake_connection: FakeConnection) -> None:
        closed = asyncio.Event()
        tracker: PlaybackTracker | None = None

        async def on_close() -> None:
            await tracker.stop()
            closed.set()

        tracker, _ = build_tracker(fake_connection, on_close=on_close)
        await tracker.start()

        fake_connection.fire("close")
        await asyncio.wait_for(closed.wait(), timeout=1.0)

        assert not tracker.running

    @pytest.mark.asyncio
    async def test_close_event_without_callback_stops(self, fake_connection: FakeConnection) -> None:
        tracker, _ = build_tracker(fake_connection)
        await tracker.start()

        fake_connection.fire("close")
        await settle()

        assert not tracker.running


class TestTrackerLive:
    """Tests for live record pushes."""

    @pytest.mark.asyncio
    async def test_records_are_appended(self, fake_connection: FakeConnection) -> None:
        tracker, recorder = build_tracker(fake_connection, times=(), live=True)
        await tracker.start()
        try:
            fake_connection.fire(
                "chatmessages",
                {
                    "event": "chatmessages",
                    "data": [
                        {"offset": 1, "content": "a", "author_displayname": "alice"},
                        {"offset": 3, "content": "b", "author_displayname": "bob"},
                    ],
                },
            )
            assert len(tracker.store) == 2

            fake_connection.position = 2.0
            await tracker.handle_tick()
            assert recorder.messages == ["a"]
        finally:
            await tracker.stop()

    @pytest.mark.asyncio
    async def test_json_text_payload(self, fake_connection: FakeConnection) -> None:
        """client-message payloads carry the records as JSON text."""
        tracker, _ = build_tracker(fake_connection, times=(), live=True)
        await tracker.start()
        try:
            fake_connection.fire(
                "chatmessages", {"event": "chatmessages", "data": '[{"offset": 1, "content": "a"}]'}
            )
            assert [m.content for m in tracker.store] == ["a"]
        finally:
            await tracker.stop()

    @pytest.mark.asyncio
    async def test_malformed_payload_is_absorbed(self, fake_connection: FakeConnection) -> None:
        tracker, _ = build_tracker(fake_connection, times=(), live=True)
        await tracker.start()
        try:
            fake_connection.fire("chatmessages", {"event": "chatmessages", "data": "{oops"})
            fake_connection.fire("chatmessages", {"event": "chatmessages"})
            assert len(tracker.store) == 0
            assert tracker.running
        finally:
            await tracker.stop()

    def test_append_records_accepts_bare_list(self, fake_connection: FakeConnection) -> None:
        tracker, _ = build_tracker(fake_connection, times=(0,))
        assert tracker.append_records([{"offset": 2, "content": "x"}]) == 1
        assert tracker.store.last_time == 2.0
