"""Reading decoder.

Turns raw MQTT payload bytes into a :class:`~livesensor.models.Reading`
or fails with :class:`~livesensor.exceptions.DecodeError`.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from livesensor.exceptions import DecodeError
from livesensor.models import Reading

#: Error text surfaced in the snapshot for any malformed payload.
INVALID_DATA_MESSAGE = "Invalid data format received"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _numeric_or_none(value: Any) -> float | None:
    if value is None:
        return None
    # bool is an int subclass; a JSON true/false is not a reading.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"expected a number, got {type(value).__name__}")
    try:
        return float(value)
    except OverflowError as exc:
        raise ValueError("number out of range") from exc


class _ReadingPayload(BaseModel):
    """Wire envelope of a live reading message."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    # "temperature"/"timestamp" are the field names older publishers use.
    value: Annotated[float | None, BeforeValidator(_numeric_or_none)] = Field(
        default=None,
        validation_alias=AliasChoices("value", "temperature"),
    )
    observed_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("observedAt", "observed_at", "timestamp"),
    )


def decode_reading(payload: bytes, *, clock: Callable[[], datetime] = _utcnow) -> Reading:
    """Decode one inbound message.

    ``value`` is ``None`` when the payload carries no value field.
    ``observed_at`` falls back to ``clock()`` when the payload has no
    timestamp.

    Raises
    ------
    DecodeError
        If the payload is not UTF-8 JSON, not a JSON object, or carries a
        field of the wrong type.
    """
    try:
        parsed = json.loads(payload.decode("utf-8"))
    except ValueError as exc:
        raise DecodeError(f"payload is not valid JSON: {exc}") from exc

    if not isinstance(parsed, dict):
        raise DecodeError(f"payload is JSON {type(parsed).__name__}, expected an object")

    try:
        envelope = _ReadingPayload.model_validate(parsed)
    except ValidationError as exc:
        raise DecodeError(f"payload has invalid fields: {exc.error_count()} error(s)") from exc

    observed_at = envelope.observed_at if envelope.observed_at is not None else clock()
    return Reading(value=envelope.value, observed_at=observed_at)
