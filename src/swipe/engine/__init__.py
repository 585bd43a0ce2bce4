"""Engine module wiring the action layer together."""

from swipe.engine.orchestrator import ActionEngine

__all__ = ["ActionEngine"]
