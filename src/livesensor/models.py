"""Data model shared by the session core and its consumers."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, field_validator


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


class ErrorKind(StrEnum):
    """Classification of the error currently reported in a snapshot."""

    CONFIG = "config"
    TRANSPORT = "transport"
    SUBSCRIBE = "subscribe"
    DECODE = "decode"


class LifecycleSignal(StrEnum):
    """Host application foreground/background state."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    BACKGROUND = "background"


def _ensure_tz_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Reading(BaseModel):
    """One decoded live reading."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    value: float | None = None
    observed_at: datetime
    source: Literal["live"] = "live"

    @field_validator("observed_at")
    @classmethod
    def _tz_aware(cls, value: datetime) -> datetime:
        return _ensure_tz_aware(value)


class HistoryReading(BaseModel):
    """A persisted reading returned by the REST history endpoint."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    recorded_at: datetime
    temperature: float | None = None
    threshold_value: float | None = None

    @field_validator("recorded_at")
    @classmethod
    def _tz_aware(cls, value: datetime) -> datetime:
        return _ensure_tz_aware(value)
