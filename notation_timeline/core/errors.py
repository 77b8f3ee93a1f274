"""Exception types raised by the timeline engine."""

from typing import Optional


class TimelineError(Exception):
    """Base class for timeline engine errors."""


class AbcParseError(TimelineError):
    """Malformed ABC notation."""

    def __init__(self, message: str, position: Optional[int] = None):
        self.position = position
        if position is not None:
            message = f"{message} (at char {position})"
        super().__init__(message)


class TimingOrderError(TimelineError):
    """Timing events arrived with decreasing timestamps."""

    def __init__(self, previous_ms: float, current_ms: float):
        self.previous_ms = previous_ms
        self.current_ms = current_ms
        super().__init__(
            f"Timing event at {current_ms:.3f}ms arrived after {previous_ms:.3f}ms"
        )


class EngineUnavailableError(TimelineError):
    """The rendering engine lacks a capability the caller needs."""
