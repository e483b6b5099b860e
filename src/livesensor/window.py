"""Trailing window of the most recent decoded values."""

from __future__ import annotations

from livesensor.config import DEFAULT_HISTORY_SIZE

HISTORY_CAPACITY: int = DEFAULT_HISTORY_SIZE

TrailingWindow = tuple[float | None, ...]


def push(window: TrailingWindow, value: float | None, capacity: int = HISTORY_CAPACITY) -> TrailingWindow:
    """Return a new window with *value* appended and the oldest entries evicted.

    Values are stored as given, including ``None`` and non-finite floats.
    """
    if capacity <= 0:
        raise ValueError("capacity must be positive")
    return (*window, value)[-capacity:]


def trend_series(window: TrailingWindow, placeholder: float = 0.0) -> list[float | None]:
    """Values handed to trend consumers.

    An empty window yields ``[placeholder]`` so charts always get one point.
    ``None`` entries are kept so gaps line up with arrival order.
    """
    if not window:
        return [placeholder]
    return list(window)
