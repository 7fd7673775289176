"""eventsync CLI — watch a scope, peek at live feature state from a terminal.

Usage:
    eventsync watch session:abc --event-id evt1     # State changes + broadcasts
    eventsync leaderboard session:abc               # Current leaderboard
    eventsync heatmap event:evt1                    # Session activity zones
    eventsync team-create session:abc "Rocket"      # Create a team (idempotent)
    eventsync translate session:abc msg42 --lang es # Translate one message

The token comes from --token or EVENTSYNC_TOKEN. Logs go to stderr;
command output goes to stdout.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import logging
import sys
from typing import Any, Awaitable, Callable, Optional

import click
import structlog

from eventsync import __version__
from eventsync.config import settings
from eventsync.connection import ConnectionHandle, ConnectionManager
from eventsync.errors import SyncError
from eventsync.events import types as ev
from eventsync.features.gamification import GamificationClient
from eventsync.features.heatmap import HeatmapClient
from eventsync.features.teams import TeamsClient
from eventsync.features.translation import TranslationClient
from eventsync.scope import Scope

# Broadcasts printed by `watch`.
WATCH_EVENTS = (
    ev.CHAT_STATUS_CHANGED,
    ev.QA_STATUS_CHANGED,
    ev.POLLS_STATUS_CHANGED,
    ev.REACTIONS_STATUS_CHANGED,
    ev.LEADERBOARD_DATA,
    ev.LEADERBOARD_UPDATED,
    ev.TEAM_LEADERBOARD_UPDATED,
    ev.POINT_EVENT,
    ev.ACHIEVEMENT_UNLOCKED,
    ev.TEAM_CREATED,
    ev.TEAM_ROSTER_UPDATED,
    ev.HEATMAP_UPDATED,
    ev.SUGGESTION_CONNECTION,
    ev.SUGGESTION_CIRCLE,
    ev.LEAD_CAPTURED,
    ev.LEAD_INTENT_UPDATED,
    ev.BOOTH_CHAT_MESSAGE,
    ev.SUBTITLE_CHUNK,
    ev.SYSTEM_ERROR,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Handles nested event loops (e.g. CliRunner inside an async test) by
    offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _manager() -> ConnectionManager:
    return ConnectionManager(config=settings)


def _renderer(environment: str):
    """Readable console lines in development, one JSON object per line elsewhere."""
    if environment == "development":
        return structlog.dev.ConsoleRenderer(colors=False)
    return structlog.processors.JSONRenderer()


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.format_exc_info,
            _renderer(settings.environment),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def _pretty_json(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "—"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


def _state_color(state: str) -> str:
    colors = {
        "connecting": "yellow",
        "connected": "cyan",
        "joined": "green",
        "reconnecting": "yellow",
        "error": "red",
        "disconnected": "white",
    }
    return colors.get(state, "white")


async def _wait_for(predicate: Callable[[], bool], timeout: float) -> bool:
    """Poll `predicate` until it holds or `timeout` seconds pass."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            return False
        await asyncio.sleep(0.05)
    return True


async def _with_scope(
    scope_text: str,
    token: str,
    event_id: Optional[str],
    body: Callable[[ConnectionHandle], Awaitable[bool]],
) -> bool:
    """Acquire the scope, wait for the join, run `body`, always release."""
    structlog.contextvars.bind_contextvars(scope=scope_text)
    try:
        async with _manager() as manager:
            handle = manager.acquire(Scope.parse(scope_text, parent_event_id=event_id), token)
            async with handle:
                await handle.wait_joined(settings.connect_timeout + settings.join_timeout)
                return await body(handle)
    except (SyncError, ValueError) as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        return False
    finally:
        structlog.contextvars.unbind_contextvars("scope")


def _finish(ok: bool) -> None:
    if not ok:
        sys.exit(1)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="eventsync")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging on stderr")
def main(verbose: bool):
    """eventsync — realtime sync client for live event platforms."""
    _configure_logging(verbose)


def _common(fn):
    fn = click.option("--event-id", "-e", help="Parent event id (for session/booth scopes)")(fn)
    fn = click.option(
        "--token",
        envvar="EVENTSYNC_TOKEN",
        required=True,
        help="Bearer token (or set EVENTSYNC_TOKEN)",
    )(fn)
    return fn


# ---------------------------------------------------------------------------
# eventsync watch
# ---------------------------------------------------------------------------


@main.command()
@click.argument("scope")
@_common
@click.option("--seconds", "-s", type=float, default=0, help="Stop after N seconds (0 = until Ctrl-C)")
def watch(scope: str, token: str, event_id: Optional[str], seconds: float):
    """Connect to SCOPE and print state transitions and broadcasts."""
    _finish(_run(_watch_impl(scope, token, event_id, seconds)))


async def _watch_impl(scope_text: str, token: str, event_id: Optional[str], seconds: float) -> bool:
    structlog.contextvars.bind_contextvars(scope=scope_text)
    try:
        async with _manager() as manager:
            handle = manager.acquire(Scope.parse(scope_text, parent_event_id=event_id), token)
            async with handle:

                def on_state(previous, state):
                    click.echo(
                        f"state  {previous.value} → "
                        f"{click.style(state.value, fg=_state_color(state.value))}"
                    )

                handle.add_state_listener(on_state)
                for name in WATCH_EVENTS:
                    handle.subscribe(
                        name,
                        lambda payload=None, *_, name=name: click.echo(
                            f"event  {name} {json.dumps(payload, default=str)}"
                        ),
                        gated=False,
                    )

                if seconds > 0:
                    await asyncio.sleep(seconds)
                else:
                    await asyncio.Event().wait()
                status = handle.status()
                return status.state.value != "error"
    except (SyncError, ValueError) as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        return False
    finally:
        structlog.contextvars.unbind_contextvars("scope")


# ---------------------------------------------------------------------------
# eventsync leaderboard
# ---------------------------------------------------------------------------


@main.command()
@click.argument("scope")
@_common
@click.option("--wait", "wait_s", type=float, default=5.0, help="Seconds to wait for data")
@click.option("--json", "as_json", is_flag=True, help="Print the raw snapshot")
def leaderboard(scope: str, token: str, event_id: Optional[str], wait_s: float, as_json: bool):
    """Show the leaderboard for a session SCOPE."""

    async def body(handle: ConnectionHandle) -> bool:
        client = GamificationClient(handle)
        if not await _wait_for(lambda: client.state.loaded, wait_s):
            click.secho("No leaderboard data received", fg="yellow", err=True)
            return False
        snap = client.snapshot()
        if as_json:
            click.echo(_pretty_json(snap))
            return True
        rows = [
            {"rank": e.rank, "name": e.user.display_name, "score": e.score}
            for e in client.state.entries
        ]
        _print_table(rows, [("Rank", "rank", 5), ("Name", "name", 30), ("Score", "score", 8)])
        if snap["current_rank"] is not None:
            click.echo(f"\nYou: #{snap['current_rank']} with {snap['current_score']} points")
        return True

    _finish(_run(_with_scope(scope, token, event_id, body)))


# ---------------------------------------------------------------------------
# eventsync heatmap
# ---------------------------------------------------------------------------


@main.command()
@click.argument("scope")
@_common
@click.option("--wait", "wait_s", type=float, default=10.0, help="Seconds to wait for an update")
def heatmap(scope: str, token: str, event_id: Optional[str], wait_s: float):
    """Show session activity zones for an event SCOPE."""

    async def body(handle: ConnectionHandle) -> bool:
        client = HeatmapClient(handle)
        if not await _wait_for(lambda: client.state.data is not None, wait_s):
            click.secho("No heatmap update received", fg="yellow", err=True)
            return False
        rows = [
            {
                "zone": z.zone_name,
                "level": z.activity_level.value,
                "heat": f"{z.heat_score:.1f}",
                "chat": f"{z.chat_velocity:.1f}",
                "qna": f"{z.qna_velocity:.1f}",
            }
            for z in client.state.zones
        ]
        _print_table(
            rows,
            [("Zone", "zone", 24), ("Level", "level", 9), ("Heat", "heat", 7),
             ("Chat/min", "chat", 9), ("Q&A/min", "qna", 9)],
        )
        click.echo(
            f"\nTotal: {client.state.total_attendees}  "
            f"Overall: {client.state.overall_activity.value}"
        )
        return True

    _finish(_run(_with_scope(scope, token, event_id, body)))


# ---------------------------------------------------------------------------
# eventsync team-create
# ---------------------------------------------------------------------------


@main.command("team-create")
@click.argument("scope")
@click.argument("name")
@_common
def team_create(scope: str, name: str, token: str, event_id: Optional[str]):
    """Create a team called NAME in a session SCOPE."""

    async def body(handle: ConnectionHandle) -> bool:
        client = TeamsClient(handle)
        result = await client.create_team(name)
        if not result.success:
            click.secho(f"Error: {result.error}", fg="red", err=True)
            return False
        team = result.get("team") or {}
        click.secho(f"Team created: {team.get('name', name)} ({team.get('id', '?')})", fg="green")
        return True

    _finish(_run(_with_scope(scope, token, event_id, body)))


# ---------------------------------------------------------------------------
# eventsync translate
# ---------------------------------------------------------------------------


@main.command()
@click.argument("scope")
@click.argument("message_id")
@_common
@click.option("--lang", "-l", default="en", show_default=True, help="Target language")
def translate(scope: str, message_id: str, token: str, event_id: Optional[str], lang: str):
    """Translate MESSAGE_ID into --lang."""

    async def body(handle: ConnectionHandle) -> bool:
        client = TranslationClient(handle, language=lang)
        translated = await client.translate(message_id)
        if translated is None:
            click.secho(f"Error: {client.error or 'Translation failed'}", fg="red", err=True)
            return False
        click.echo(translated.translated_text)
        return True

    _finish(_run(_with_scope(scope, token, event_id, body)))


if __name__ == "__main__":
    main()
