"""Observable snapshot store.

This is the only component allowed to replace the session snapshot.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from livesensor.models import ConnectionState, ErrorKind, Reading

_logger = logging.getLogger(__name__)


class SessionSnapshot(BaseModel):
    """Immutable view of everything the session exposes to consumers."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    latest_reading: Reading | None = None
    last_error: str | None = None
    error_kind: ErrorKind | None = None
    history: tuple[float | None, ...] = Field(default_factory=tuple)


SnapshotListener = Callable[[SessionSnapshot], None]
Transition = Callable[..., SessionSnapshot]


class SnapshotStore:
    """Holds the current snapshot and notifies listeners on every replacement.

    Every :meth:`apply` swaps in one complete snapshot, so a listener never
    sees a partially updated state. After :meth:`close` the snapshot is
    frozen for good.
    """

    def __init__(self, initial: SessionSnapshot | None = None) -> None:
        self._snapshot = initial if initial is not None else SessionSnapshot()
        self._listeners: list[SnapshotListener] = []
        self._closed = False

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that removes it again."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    def apply(self, transition: Transition, *args: Any, **kwargs: Any) -> SessionSnapshot | None:
        """Replace the snapshot with ``transition(snapshot, *args, **kwargs)``.

        Returns the new snapshot, or ``None`` when the store is closed.
        """
        if self._closed:
            _logger.debug("Snapshot transition %s dropped, store closed", transition.__name__)
            return None

        previous = self._snapshot
        updated = transition(previous, *args, **kwargs)
        self._snapshot = updated
        if updated.connection_state != previous.connection_state:
            _logger.debug("Connection state %s -> %s", previous.connection_state, updated.connection_state)
        self._notify(updated)
        return updated

    def close(self) -> None:
        """Stop accepting transitions and drop all listeners."""
        self._closed = True
        self._listeners.clear()

    def _notify(self, snapshot: SessionSnapshot) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                _logger.warning("Snapshot listener %r failed", listener, exc_info=True)

    def __repr__(self) -> str:
        return f"SnapshotStore(state={self._snapshot.connection_state!s}, closed={self._closed})"
