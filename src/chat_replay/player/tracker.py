"""Playback tracker: drives the synchronizer from the player's clock.

The tracker polls the player's playback position on a steady period and
forwards it to Synchronizer.advance(). Seek notifications trigger
Synchronizer.seek(), close notifications tear the session down, and in live
mode pushed chat records are appended to the message store.

Every position request is an asynchronous round trip, so other handlers run
while it is in flight. A seek bumps a generation counter when it issues its
request; any response requested before the most recent seek is discarded, so
a slow poll can never move the cursor after a newer seek has repositioned it.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from chat_replay.errors import PlayerCommandError, PlayerConnectionError
from chat_replay.logging import get_logger
from chat_replay.normalizer import normalize_records
from chat_replay.player.connection import CHAT_MESSAGES_EVENT, CLOSE_EVENT, PlayerConnection
from chat_replay.store import MessageStore
from chat_replay.synchronizer import Synchronizer

logger = get_logger("tracker")

DEFAULT_POLL_INTERVAL_SECONDS = 2.0
PLAYBACK_PROPERTY = "playback-time"
SEEK_EVENT = "seek"


class PlaybackTracker:
    """Bridges a player connection to a synchronizer."""

    def __init__(
        self,
        connection: PlayerConnection,
        synchronizer: Synchronizer,
        store: MessageStore,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        live: bool = False,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {poll_interval}")
        self.connection = connection
        self.synchronizer = synchronizer
        self.store = store
        self.poll_interval = poll_interval
        self.live = live
        self.on_close = on_close
        self._running = False
        self._seek_generation = 0
        self._ticker_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._close_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Subscribe to player events, prime the cursor, and start polling."""
        self._running = True
        self.connection.on(SEEK_EVENT, self._on_seek)
        self.connection.on(CLOSE_EVENT, self._on_close)
        if self.live:
            self.connection.on(CHAT_MESSAGES_EVENT, self._on_chat_messages)

        # Treat startup as a seek to the current position so playback joined
        # mid-file shows the replay window instead of every earlier message
        await self.handle_seek()

        self._ticker_task = asyncio.create_task(self._tick_loop())
        logger.info(
            "Tracking playback: interval=%.1fs live=%s messages=%d",
            self.poll_interval,
            self.live,
            len(self.store),
        )

    async def stop(self) -> None:
        """Stop polling, detach from the player, and drop in-flight requests."""
        if not self._running:
            return
        self._running = False

        self.connection.off(SEEK_EVENT, self._on_seek)
        self.connection.off(CLOSE_EVENT, self._on_close)
        self.connection.off(CHAT_MESSAGES_EVENT, self._on_chat_messages)

        tasks = list(self._tasks)
        if self._ticker_task is not None:
            tasks.append(self._ticker_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._ticker_task = None
        logger.info("Stopped tracking playback")

    async def handle_tick(self) -> None:
        """Poll the playback position and emit newly elapsed messages."""
        generation = self._seek_generation
        position = await self._fetch_position()
        if position is None or not self._is_current(generation):
            return
        self.synchronizer.advance(position)

    async def handle_seek(self) -> None:
        """Re-synchronize after the player jumped to a new position."""
        self._seek_generation += 1
        generation = self._seek_generation
        position = await self._fetch_position()
        if position is None or not self._is_current(generation):
            return
        logger.info("Seek: position=%.3f", position)
        self.synchronizer.seek(position)

    def append_records(self, payload: Any) -> int:
        """Normalize a live record batch and append it to the store.

        Returns:
            Number of messages appended
        """
        data = payload.get("data") if isinstance(payload, dict) else payload
        if data is None:
            return 0
        messages = normalize_records(data, after=self.store.last_time)
        count = self.store.extend(messages)
        logger.debug("Appended live messages: count=%d total=%d", count, len(self.store))
        return count

    async def _tick_loop(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.poll_interval
        while self._running:
            await asyncio.sleep(max(0.0, deadline - loop.time()))
            if not self._running:
                break
            self._spawn(self.handle_tick())

            deadline += self.poll_interval
            now = loop.time()
            if deadline < now:
                # Skip ticks missed while the loop was blocked
                missed = int((now - deadline) // self.poll_interval) + 1
                deadline += missed * self.poll_interval

    async def _fetch_position(self) -> float | None:
        try:
            value = await self.connection.get_property(PLAYBACK_PROPERTY)
        except PlayerCommandError as e:
            # mpv reports "property unavailable" while no file is loaded
            logger.debug("Playback position unavailable: %s", e)
            return None
        except PlayerConnectionError as e:
            logger.debug("Playback position request dropped: %s", e)
            return None
        if value is None:
            return None
        return float(value)

    def _is_current(self, generation: int) -> bool:
        return self._running and generation == self._seek_generation

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Tracker task failed: %s", task.get_name(), exc_info=exc)

    def _on_seek(self, _event: Any = None) -> None:
        if self._running:
            self._spawn(self.handle_seek())

    def _on_close(self, _event: Any = None) -> None:
        if not self._running or self._close_task is not None:
            return
        logger.info("Player closed, ending session")
        # Not tracked in _tasks: stop() must not cancel the task running it
        self._close_task = asyncio.create_task(self._handle_close())
        self._close_task.add_done_callback(self._task_done)

    async def _handle_close(self) -> None:
        if self.on_close is not None:
            await self.on_close()
        else:
            await self.stop()

    def _on_chat_messages(self, payload: Any) -> None:
        if self._running:
            self.append_records(payload)
