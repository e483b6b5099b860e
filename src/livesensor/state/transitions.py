"""Snapshot transition functions.

Each function maps the current snapshot (plus event data) to the next one.
Updates that belong together, such as a successful connect clearing the
previous error, happen in a single transition.
"""

from __future__ import annotations

from livesensor.decoder import INVALID_DATA_MESSAGE
from livesensor.exceptions import SensorError
from livesensor.models import ConnectionState, ErrorKind, Reading
from livesensor.state.store import SessionSnapshot
from livesensor.window import HISTORY_CAPACITY, push


def begin_session(_snapshot: SessionSnapshot) -> SessionSnapshot:
    """Start over with an empty window and no error."""
    return SessionSnapshot()


def connecting(snapshot: SessionSnapshot) -> SessionSnapshot:
    return snapshot.model_copy(update={"connection_state": ConnectionState.CONNECTING})


def connected(snapshot: SessionSnapshot) -> SessionSnapshot:
    return snapshot.model_copy(
        update={
            "connection_state": ConnectionState.CONNECTED,
            "last_error": None,
            "error_kind": None,
        }
    )


def reconnecting(snapshot: SessionSnapshot) -> SessionSnapshot:
    return snapshot.model_copy(update={"connection_state": ConnectionState.RECONNECTING})


def closed(snapshot: SessionSnapshot) -> SessionSnapshot:
    return snapshot.model_copy(update={"connection_state": ConnectionState.DISCONNECTED})


def transport_failed(snapshot: SessionSnapshot, error: SensorError) -> SessionSnapshot:
    return snapshot.model_copy(
        update={
            "connection_state": ConnectionState.ERROR,
            "last_error": str(error),
            "error_kind": ErrorKind.TRANSPORT,
        }
    )


def subscribe_failed(snapshot: SessionSnapshot, error: SensorError) -> SessionSnapshot:
    # The connection itself is still usable; state is left alone.
    return snapshot.model_copy(update={"last_error": str(error), "error_kind": ErrorKind.SUBSCRIBE})


def reading_received(
    snapshot: SessionSnapshot,
    reading: Reading,
    capacity: int = HISTORY_CAPACITY,
) -> SessionSnapshot:
    return snapshot.model_copy(
        update={
            "latest_reading": reading,
            "history": push(snapshot.history, reading.value, capacity),
            "last_error": None,
            "error_kind": None,
        }
    )


def decode_failed(snapshot: SessionSnapshot) -> SessionSnapshot:
    return snapshot.model_copy(update={"last_error": INVALID_DATA_MESSAGE, "error_kind": ErrorKind.DECODE})


def config_rejected(snapshot: SessionSnapshot, error: SensorError) -> SessionSnapshot:
    return snapshot.model_copy(
        update={
            "connection_state": ConnectionState.DISCONNECTED,
            "last_error": str(error),
            "error_kind": ErrorKind.CONFIG,
        }
    )
