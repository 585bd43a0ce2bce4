"""Offline queue CLI commands."""

import asyncio
import json
from typing import Any, Awaitable, Callable, TypeVar

import typer

from swipe.config import get_settings
from swipe.engine import ActionEngine
from swipe.errors import SwipeError
from swipe.models import ActionType

queue_app = typer.Typer(
    name="queue",
    help="Offline action queue - inspect, add, flush and clear pending actions.",
    no_args_is_help=True,
)

T = TypeVar("T")


def _output(data: Any, as_json: bool, human_message: str) -> None:
    """Output data as JSON or human-readable format."""
    if as_json:
        typer.echo(json.dumps(data))
    else:
        typer.echo(human_message)


def _with_engine(func: Callable[[ActionEngine], Awaitable[T]]) -> T:
    """Run func against a started engine and always stop it afterwards."""

    async def runner() -> T:
        engine = ActionEngine(get_settings())
        await engine.start(sync_pending=False)
        try:
            return await func(engine)
        finally:
            await engine.stop()

    return asyncio.run(runner())


@queue_app.command("list")
def list_command(
    output_json: bool = typer.Option(False, "--json", "-j", help="Output in JSON format"),
) -> None:
    """List pending actions in the order they will be replayed."""

    async def run(engine: ActionEngine) -> list[dict]:
        return [intent.to_record() for intent in engine.queue.list_pending()]

    records = _with_engine(run)
    if output_json:
        typer.echo(json.dumps(records))
        return

    if not records:
        typer.echo("No pending actions.")
        return
    for record in records:
        target = record["email_id"] or record["sender_email"] or record["domain"]
        typer.echo(
            f"{record['id']}  {record['type']:<12} {target}  (retries: {record['retry_count']})"
        )


@queue_app.command("add")
def add_command(
    action: ActionType = typer.Argument(..., help="Action to queue"),
    email_id: str = typer.Option(None, "--email-id", "-e", help="Target email id"),
    sender: str = typer.Option(None, "--sender", "-s", help="Target sender (block)"),
    domain: str = typer.Option(None, "--domain", "-d", help="Target domain (nuke)"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output in JSON format"),
) -> None:
    """Queue an action for the next sync."""

    async def run(engine: ActionEngine) -> str:
        return engine.queue.enqueue(
            action, email_id=email_id, sender_email=sender, domain=domain, reason="cli"
        )

    try:
        intent_id = _with_engine(run)
    except SwipeError as e:
        _output({"status": "error", "message": str(e)}, output_json, f"Error: {e}")
        raise typer.Exit(1)

    _output(
        {"status": "queued", "id": intent_id, "action": action.value},
        output_json,
        f"Queued {action.value} ({intent_id}).",
    )


@queue_app.command("flush")
def flush_command(
    output_json: bool = typer.Option(False, "--json", "-j", help="Output in JSON format"),
) -> None:
    """Check the backend and replay pending actions."""

    async def run(engine: ActionEngine) -> dict:
        result = await engine.sync_now()
        return {**result.to_dict(), "online": engine.monitor.online, "pending": engine.queue.count()}

    data = _with_engine(run)
    if not data["online"]:
        _output(
            {"status": "offline", **data},
            output_json,
            f"Backend unreachable; {data['pending']} actions still pending.",
        )
        raise typer.Exit(1)

    _output(
        {"status": "synced", **data},
        output_json,
        f"Synced {data['synced']}, failed {data['failed']}, "
        f"retrying {data['retried']}, pending {data['pending']}.",
    )


@queue_app.command("clear")
def clear_command(
    yes: bool = typer.Option(False, "--yes", "-y", help="Don't ask for confirmation"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output in JSON format"),
) -> None:
    """Drop every pending action without sending it."""
    if not yes and not typer.confirm("Drop all pending actions?"):
        raise typer.Exit(1)

    async def run(engine: ActionEngine) -> int:
        return engine.queue.clear()

    dropped = _with_engine(run)
    _output(
        {"status": "cleared", "dropped": dropped},
        output_json,
        f"Dropped {dropped} pending actions.",
    )
