"""Asynchronous client for mpv's JSON IPC channel.

mpv exchanges newline-delimited JSON over a Unix socket (or a named pipe on
Windows). Commands carry a ``request_id`` that mpv echoes back in its reply:

    -> {"command": ["get_property", "playback-time"], "request_id": 1}
    <- {"data": 12.5, "error": "success", "request_id": 1}

Unsolicited messages are events, e.g. ``{"event": "seek"}``. Scripts can push
chat records with ``script-message chatmessages <json>``, which arrives as a
``client-message`` event; a direct ``{"event": "chatmessages", "data": [...]}``
message is accepted as well.
"""

import asyncio
import json
import os
import sys
import tempfile
from pathlib import Path
from typing import Any

from chat_replay.config import DEFAULT_SOCKET_NAME
from chat_replay.errors import PlayerCommandError, PlayerConnectionError
from chat_replay.events import Callback, EventEmitter
from chat_replay.logging import get_logger

logger = get_logger("connection")

WINDOWS_PIPE_PREFIX = "\\\\.\\pipe\\"

# Live chat batches can be large single lines
STREAM_LIMIT = 16 * 1024 * 1024

CLOSE_EVENT = "close"
CHAT_MESSAGES_EVENT = "chatmessages"


def resolve_socket_address(socket_name: str, platform: str = sys.platform) -> str:
    """Turn a channel name into a socket path or pipe address.

    On Windows the name becomes ``\\\\.\\pipe\\<name>``. Elsewhere a name
    containing a path separator is used as a path, and a bare name is placed
    in the temporary directory.
    """
    if platform == "win32":
        if socket_name.startswith(WINDOWS_PIPE_PREFIX):
            return socket_name
        return WINDOWS_PIPE_PREFIX + socket_name

    if "/" in socket_name or socket_name.startswith("~"):
        return os.path.expanduser(socket_name)
    return str(Path(tempfile.gettempdir()) / socket_name)


async def _open_pipe_connection(address: str) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Open a Windows named pipe as a stream pair (proactor loop only)."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=STREAM_LIMIT)
    protocol = asyncio.StreamReaderProtocol(reader)
    transport, _ = await loop.create_pipe_connection(lambda: protocol, address)
    writer = asyncio.StreamWriter(transport, protocol, reader, loop)
    return reader, writer


class PlayerConnection:
    """Connection to a running mpv instance.

    Events are dispatched to subscribers registered with on(). Subscriber
    failures are logged so they cannot stop the read loop. When the player
    goes away (socket EOF, read error, or mpv's ``shutdown`` event) every
    pending request fails with PlayerConnectionError and a ``close`` event is
    published once.
    """

    def __init__(self, socket_name: str = DEFAULT_SOCKET_NAME) -> None:
        self.socket_name = socket_name
        self.address = resolve_socket_address(socket_name)
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._read_task: asyncio.Task | None = None
        self._events = EventEmitter(isolate_errors=True)
        self._pending: dict[int, tuple[list, asyncio.Future]] = {}
        self._next_request_id = 1
        self._closed = False
        self._released = False

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._closed

    async def connect(self) -> None:
        """Open the IPC channel and start dispatching incoming messages.

        Raises:
            PlayerConnectionError: If the channel cannot be opened
        """
        try:
            if sys.platform == "win32":
                self._reader, self._writer = await _open_pipe_connection(self.address)
            else:
                self._reader, self._writer = await asyncio.open_unix_connection(
                    self.address, limit=STREAM_LIMIT
                )
        except OSError as e:
            raise PlayerConnectionError(f"Cannot connect to player at {self.address}: {e}") from e

        self._closed = False
        self._released = False
        self._read_task = asyncio.create_task(self._read_loop())
        logger.info("Connected to player: address=%s", self.address)

    def on(self, event: str, callback: Callback) -> None:
        """Subscribe to a player event (seek, close, chatmessages, ...)."""
        self._events.subscribe(event, callback)

    def off(self, event: str, callback: Callback) -> None:
        self._events.unsubscribe(event, callback)

    async def command(self, *args: Any) -> Any:
        """Send a command and wait for its reply.

        Returns:
            The reply's ``data`` field

        Raises:
            PlayerConnectionError: If the connection is closed or drops
            PlayerCommandError: If mpv reports an error
        """
        if not self.connected:
            raise PlayerConnectionError("Player connection is not open")

        command = list(args)
        request_id = self._next_request_id
        self._next_request_id += 1

        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = (command, future)
        payload = json.dumps({"command": command, "request_id": request_id}) + "\n"

        try:
            self._writer.write(payload.encode("utf-8"))
            await self._writer.drain()
            return await future
        except OSError as e:
            raise PlayerConnectionError(f"Lost player connection: {e}") from e
        finally:
            self._pending.pop(request_id, None)

    async def get_property(self, name: str) -> Any:
        """Read a player property, e.g. ``playback-time``."""
        return await self.command("get_property", name)

    async def close(self) -> None:
        """Close the channel without publishing a ``close`` event.

        Also releases the writer and subscribers after a remote drop.
        """
        if self._released:
            return
        self._released = True
        self._closed = True

        if self._read_task is not None and self._read_task is not asyncio.current_task():
            self._read_task.cancel()
            try:
                await self._read_task
            except asyncio.CancelledError:
                pass

        self._fail_pending("Player connection closed")

        if self._writer is not None:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except OSError:
                pass

        self._events.clear()
        logger.info("Closed player connection: address=%s", self.address)

    async def _read_loop(self) -> None:
        reason = "end of stream"
        try:
            while True:
                line = await self._reader.readline()
                if not line:
                    break
                if self._handle_line(line):
                    reason = "player shutdown"
                    break
        except (OSError, ValueError) as e:
            reason = str(e)
            logger.warning("Player connection read failed: %s", e)
        finally:
            if not self._closed:
                self._connection_lost(reason)

    def _handle_line(self, line: bytes) -> bool:
        """Dispatch one IPC message. Returns True when mpv announced shutdown."""
        try:
            message = json.loads(line)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Ignoring malformed IPC message: %r", line[:200])
            return False

        if not isinstance(message, dict):
            return False

        event = message.get("event")
        if event is None:
            self._resolve_request(message)
            return False

        if event == "shutdown":
            return True

        if event == "client-message":
            args = message.get("args") or []
            if args:
                data = args[1] if len(args) > 1 else None
                self._events.publish(args[0], {"event": args[0], "data": data})
            return False

        self._events.publish(event, message)
        return False

    def _resolve_request(self, message: dict) -> None:
        entry = self._pending.get(message.get("request_id"))
        if entry is None:
            return
        command, future = entry
        if future.done():
            return
        error = message.get("error", "success")
        if error == "success":
            future.set_result(message.get("data"))
        else:
            future.set_exception(PlayerCommandError(command, error))

    def _fail_pending(self, reason: str) -> None:
        for _command, future in self._pending.values():
            if not future.done():
                future.set_exception(PlayerConnectionError(reason))
        self._pending.clear()

    def _connection_lost(self, reason: str) -> None:
        self._closed = True
        self._fail_pending(f"Player connection lost: {reason}")
        if self._writer is not None:
            self._writer.close()
        logger.info("Player connection lost: address=%s reason=%s", self.address, reason)
        self._events.publish(CLOSE_EVENT)
