"""Status command for Swipe CLI."""

import asyncio
import json

import typer

from swipe.config import get_settings
from swipe.engine import ActionEngine


async def _collect_status() -> dict:
    engine = ActionEngine(get_settings())
    await engine.start(sync_pending=False)
    try:
        return engine.get_status()
    finally:
        await engine.stop()


def status_command(
    output_json: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output in JSON format",
    ),
) -> None:
    """Show offline queue status.

    Displays whether offline storage works and how many actions are
    waiting to be synced.
    """
    status = asyncio.run(_collect_status())
    queue = status["queue"]

    status_data = {
        "queue_available": queue["available"],
        "queue_pending": queue["pending"],
        "queue_retrying": queue["retrying"],
        "by_type": queue["by_type"],
        "data_dir": status["data_dir"],
    }

    if output_json:
        typer.echo(json.dumps(status_data))
        return

    typer.echo("")
    typer.echo("Swipe Agent Status")
    typer.echo("------------------")
    if not queue["available"]:
        typer.echo("Offline storage: unavailable (actions are sent directly only)")
    typer.echo(f"Queue: {queue['pending']} pending actions")
    if queue["retrying"] > 0:
        typer.echo(f"Retrying: {queue['retrying']} actions")
    for action, count in sorted(queue["by_type"].items()):
        typer.echo(f"  {action}: {count}")
    typer.echo("")

    if queue["pending"]:
        typer.echo("Replay them with: swipe queue flush")
