"""Event log payloads.

Stream entries are flat string maps. Scalar fields are written with
``str()``; dict fields are serialized to JSON and parsed back by the
consumer. ``None`` fields are left out of the entry entirely.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import orjson
from pydantic import BaseModel, Field, ValidationError

from core.models.strategy import ActionType


_INDICATOR_JSON_FIELDS = ("parameters",)
_ACTION_JSON_FIELDS = ("parameters", "triggering_indicator")


class MalformedEventError(ValueError):
    """A stream entry could not be turned into an event."""


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


def _encode_fields(data: dict[str, Any], json_fields: tuple[str, ...]) -> dict[str, str]:
    fields: dict[str, str] = {}
    for key, value in data.items():
        if value is None:
            continue
        if key in json_fields:
            fields[key] = orjson.dumps(value).decode()
        else:
            fields[key] = str(value)
    return fields


def _decode_fields(
    raw: dict[Any, Any] | None, json_fields: tuple[str, ...]
) -> dict[str, Any]:
    if not raw:
        raise MalformedEventError("empty stream entry")

    data: dict[str, Any] = {}
    for key, value in raw.items():
        name = _decode(key)
        text = _decode(value)
        if name in json_fields:
            try:
                data[name] = orjson.loads(text)
            except orjson.JSONDecodeError as e:
                raise MalformedEventError(f"field '{name}' is not valid JSON: {e}") from e
        else:
            data[name] = text
    return data


class IndicatorUpdateEvent(BaseModel):
    """Published after an indicator series was fetched and cached."""

    fingerprint: str
    indicator_type: str
    symbol: str
    interval: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    data_source: str | None = None
    last_refreshed: str | None = None
    fetch_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_fields(self) -> dict[str, str]:
        """Flatten to a stream entry."""
        return _encode_fields(self.model_dump(mode="json"), _INDICATOR_JSON_FIELDS)

    @classmethod
    def from_fields(cls, raw: dict[Any, Any] | None) -> IndicatorUpdateEvent:
        """Parse a stream entry.

        Raises:
            MalformedEventError: If the entry is empty, a JSON field does not
                parse, or required fields are missing.
        """
        data = _decode_fields(raw, _INDICATOR_JSON_FIELDS)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise MalformedEventError(str(e)) from e

    def describe(self) -> str:
        return f"{self.indicator_type} {self.symbol} {self.interval} {self.parameters}"


class ActionRequiredEvent(BaseModel):
    """Published once per action when a strategy's conditions are all met."""

    action_id: str
    action_type: ActionType
    parameters: dict[str, Any] = Field(default_factory=dict)
    strategy_id: str
    triggering_indicator: dict[str, Any] = Field(default_factory=dict)

    def to_fields(self) -> dict[str, str]:
        """Flatten to a stream entry."""
        return _encode_fields(self.model_dump(mode="json"), _ACTION_JSON_FIELDS)

    @classmethod
    def from_fields(cls, raw: dict[Any, Any] | None) -> ActionRequiredEvent:
        """Parse a stream entry.

        Raises:
            MalformedEventError: If the entry cannot be parsed.
        """
        data = _decode_fields(raw, _ACTION_JSON_FIELDS)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise MalformedEventError(str(e)) from e
