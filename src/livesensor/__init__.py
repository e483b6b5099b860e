"""livesensor - Async MQTT live sensor subscriber."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("livesensor")
except PackageNotFoundError:
    __version__ = "0+local"
from livesensor.config import SensorConfig, validate_config
from livesensor.decoder import INVALID_DATA_MESSAGE, decode_reading
from livesensor.exceptions import (
    ConfigError,
    DecodeError,
    HistoryFetchError,
    SensorError,
    SessionClosedError,
    SubscribeError,
    TransportError,
)
from livesensor.history import HistoryClient
from livesensor.lifecycle import LifecycleBridge, LifecycleSource, ManualLifecycleSource
from livesensor.models import ConnectionState, ErrorKind, HistoryReading, LifecycleSignal, Reading
from livesensor.session import SensorSession
from livesensor.state.store import SessionSnapshot, SnapshotStore
from livesensor.window import HISTORY_CAPACITY, push, trend_series

__all__ = [
    "__version__",
    "ConfigError",
    "ConnectionState",
    "DecodeError",
    "ErrorKind",
    "HISTORY_CAPACITY",
    "HistoryClient",
    "HistoryFetchError",
    "HistoryReading",
    "INVALID_DATA_MESSAGE",
    "LifecycleBridge",
    "LifecycleSignal",
    "LifecycleSource",
    "ManualLifecycleSource",
    "Reading",
    "SensorConfig",
    "SensorError",
    "SensorSession",
    "SessionClosedError",
    "SessionSnapshot",
    "SnapshotStore",
    "SubscribeError",
    "TransportError",
    "decode_reading",
    "push",
    "trend_series",
    "validate_config",
]
