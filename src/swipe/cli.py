"""Swipe CLI - Command-line interface for the offline action queue."""

import typer

from swipe import __version__
from swipe.cli_commands.queue import queue_app
from swipe.cli_commands.status import status_command
from swipe.config import get_settings
from swipe.logging import setup_logging

app = typer.Typer(
    name="swipe",
    help="Swipe Agent - reliable, undoable inbox actions that survive going offline.",
    no_args_is_help=True,
)

# Register subcommands
app.add_typer(queue_app, name="queue")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"swipe-agent {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Swipe Agent - reliable, undoable inbox actions."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_file)


app.command(name="status")(status_command)


if __name__ == "__main__":
    app()
