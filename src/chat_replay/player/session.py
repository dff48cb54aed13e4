"""Replay session: owns the store, cursor, emitter, and player tracking."""

import asyncio
from pathlib import Path
from typing import Self

from chat_replay.config import Config
from chat_replay.events import Callback, EventEmitter
from chat_replay.logging import get_logger
from chat_replay.normalizer import is_live_source, normalize_source
from chat_replay.player.connection import PlayerConnection
from chat_replay.player.tracker import PlaybackTracker
from chat_replay.store import MessageStore
from chat_replay.synchronizer import Synchronizer

logger = get_logger("session")

READY_EVENT = "ready"
CLOSE_EVENT = "close"


class ReplaySession:
    """Replays a chat transcript in sync with a running player.

    Subscribers registered with on() receive:
        message(None, tags, content)  one per newly elapsed message
        delete()                      clear everything displayed
        ready()                       after start() completes
        close()                       after the session is torn down
    """

    def __init__(
        self,
        source: str | Path,
        config: Config | None = None,
        connection: PlayerConnection | None = None,
    ) -> None:
        """Create a session.

        Args:
            source: Transcript path (.txt/.json) or "ondemand" for live mode
            config: Application configuration (defaults if omitted)
            connection: Player connection; built from config if omitted
        """
        self.config = config or Config()
        self.source = source
        self.live = is_live_source(source)
        self.emitter = EventEmitter(isolate_errors=self.config.sync.isolate_subscriber_errors)
        self.store = MessageStore()
        self.synchronizer = Synchronizer(
            self.store, self.emitter, self.config.sync.num_messages_on_refresh
        )
        self.connection = connection or PlayerConnection(self.config.player.socket_name)
        self.tracker: PlaybackTracker | None = None
        self._started = False
        self._closed = False
        self._closed_event = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed

    def on(self, event: str, callback: Callback) -> None:
        """Subscribe to a session event."""
        self.emitter.subscribe(event, callback)

    async def start(self) -> None:
        """Load the transcript, connect to the player, and begin syncing.

        Raises:
            SourceAccessError: If the transcript cannot be read
            TranscriptParseError: If a plain-text transcript is malformed
            PlayerConnectionError: If the player cannot be reached
        """
        if self._started:
            raise RuntimeError("Session already started")
        self._started = True

        if not self.live:
            messages = await asyncio.to_thread(normalize_source, self.source)
            self.store.extend(messages)

        self.tracker = PlaybackTracker(
            self.connection,
            self.synchronizer,
            self.store,
            poll_interval=self.config.sync.poll_interval_seconds,
            live=self.live,
            on_close=self.close,
        )
        try:
            await self.connection.connect()
            await self.tracker.start()
        except BaseException:
            await self.close()
            raise

        logger.info(
            "Session started: source=%s live=%s messages=%d",
            self.source,
            self.live,
            len(self.store),
        )
        self.emitter.publish(READY_EVENT)

    async def close(self) -> None:
        """Tear the session down. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        if self.tracker is not None:
            await self.tracker.stop()
        await self.connection.close()

        logger.info("Session closed: source=%s", self.source)
        try:
            self.emitter.publish(CLOSE_EVENT)
        finally:
            self.emitter.clear()
            self.store.clear()
            self.synchronizer.reset()
            self._closed_event.set()

    async def wait_closed(self) -> None:
        """Wait until the session has been torn down."""
        await self._closed_event.wait()

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.close()
