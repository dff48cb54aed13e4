"""CLI entry point for replaying a chat log next to mpv.

Allows running the player as a module:
    python -m chat_replay.player --chatlog chat.txt --pipename mpvsocket

Start mpv with a matching IPC channel, e.g.:
    mpv --input-ipc-server=/tmp/mpvsocket video.mkv
"""

import asyncio
import logging
import signal
import sys
from dataclasses import replace
from pathlib import Path

import click

from chat_replay.config import Config, load_config
from chat_replay.errors import ChatReplayError
from chat_replay.logging import get_logger, setup_logging
from chat_replay.models import ChatTags
from chat_replay.player.session import ReplaySession

logger = get_logger("player")

# Strong references to fire-and-forget tasks started from signal handlers
_background_tasks: set[asyncio.Task] = set()


def parse_color(color: str | None) -> tuple[int, int, int] | None:
    """Convert '#RRGGBB' to an RGB tuple for terminal styling."""
    if not color or not color.startswith("#") or len(color) != 7:
        return None
    try:
        return tuple(int(color[i : i + 2], 16) for i in (1, 3, 5))
    except ValueError:
        return None


def print_message(_metadata: object, tags: ChatTags, content: str) -> None:
    """Print one chat message."""
    username = click.style(tags.username, fg=parse_color(tags.color) or "cyan", bold=True)
    click.echo(f"{username}: {content}")


def print_clear() -> None:
    """Mark a display reset after a seek."""
    click.echo(click.style("-" * 40, fg="bright_black"))


async def run_replay(chatlog: str, config: Config) -> None:
    """Run a replay session until the player closes or a signal arrives."""
    session = ReplaySession(chatlog, config)
    session.on("message", print_message)
    session.on("delete", print_clear)

    await session.start()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda s=sig: _request_close(session, s))
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass

    try:
        await session.wait_closed()
    finally:
        await session.close()


def _request_close(session: ReplaySession, sig: signal.Signals) -> None:
    logger.info("Received signal %s, shutting down", sig.name)
    task = asyncio.create_task(session.close())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


@click.command()
@click.option("--chatlog", required=True, help='Transcript (.txt or .json), or "ondemand" for live chat')
@click.option("--pipename", help="mpv IPC socket or pipe name")
@click.option("--messages-on-refresh", type=int, help="Messages replayed after a seek")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to config.yaml",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(
    chatlog: str,
    pipename: str | None,
    messages_on_refresh: int | None,
    config_path: Path | None,
    verbose: bool,
) -> None:
    """Replay a chat log in sync with mpv playback."""
    config = load_config(config_path)
    if pipename:
        config.player = replace(config.player, socket_name=pipename)
    if messages_on_refresh is not None:
        config.sync = replace(config.sync, num_messages_on_refresh=messages_on_refresh)

    setup_logging(
        "player",
        log_dir=config.logging.log_dir,
        level=logging.DEBUG if verbose else config.logging.level,
    )

    try:
        asyncio.run(run_replay(chatlog, config))
    except (ChatReplayError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
