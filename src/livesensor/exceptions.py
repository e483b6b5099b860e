"""Custom exception hierarchy for livesensor."""

from __future__ import annotations


class SensorError(Exception):
    """Base exception for all livesensor errors."""


class ConfigError(SensorError):
    """Missing or invalid broker configuration.

    Fatal to startup: no connection is attempted.
    """


class TransportError(SensorError):
    """Broker link failure (connect, reconnect, network loss).

    Non-fatal. paho-mqtt keeps retrying on its fixed schedule.
    """

    def __init__(self, message: str, *, reason_code: int | None = None) -> None:
        self.reason_code = reason_code
        super().__init__(message)


class SubscribeError(SensorError):
    """Subscribe request rejected after a successful connect."""

    def __init__(self, message: str, *, topic: str = "") -> None:
        self.topic = topic
        super().__init__(message)


class DecodeError(SensorError):
    """Inbound payload could not be decoded into a reading."""


class SessionClosedError(SensorError):
    """Operation attempted on a session that has already been shut down."""


class HistoryFetchError(SensorError):
    """REST history request failed (network, non-200, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str = "",
    ) -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(message)
