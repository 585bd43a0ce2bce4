"""CLI command modules for the Swipe agent."""

from swipe.cli_commands.queue import queue_app
from swipe.cli_commands.status import status_command

__all__ = ["queue_app", "status_command"]
