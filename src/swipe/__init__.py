"""Swipe agent - reliable, undoable inbox actions for the Swipe mail cleaner."""

__version__ = "0.1.0"
