"""Indicator request identity, freshness windows and refresh cadence.

An indicator request is everything needed to ask the market-data provider
for one series. Its fingerprint is the cache key and the dedup key used by
the scheduler, so two logically identical requests must always produce the
same string regardless of how their parameter dicts were built.
"""

from __future__ import annotations

from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, Field

from core.models.strategy import Condition

FINGERPRINT_PREFIX = "indicator:"

# Cache lifetime per provider interval. Each entry outlives the native
# refresh cycle of that interval.
INTERVAL_TTL_SECONDS: dict[str, int] = {
    "1min": 60 * 5,
    "5min": 300 * 2,
    "15min": 900 * 2,
    "30min": 1800 * 2,
    "60min": 3600 * 2,
    "daily": 86400 + 3600,
    "weekly": 86400 * 7 + 3600,
    "monthly": 86400 * 30 + 3600,
}
DEFAULT_TTL_SECONDS = 86400

# Seconds between ticks of an indicator's recurring refresh task.
INTERVAL_REFRESH_SECONDS: dict[str, int] = {
    "1min": 60,
    "5min": 300,
    "15min": 900,
    "30min": 1800,
    "60min": 3600,
    "daily": 3600,
    "weekly": 3600 * 6,
    "monthly": 86400,
}


class IndicatorRequest(BaseModel):
    """One fetchable indicator series."""

    model_config = ConfigDict(frozen=True)

    indicator_type: str
    symbol: str
    interval: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    data_source: str | None = None

    @classmethod
    def from_condition(cls, condition: Condition) -> IndicatorRequest:
        """Build the request a condition depends on.

        Raises:
            ValueError: If the condition has no symbol or interval.
        """
        if not condition.is_schedulable:
            raise ValueError(
                f"Condition {condition.id} is missing symbol or interval"
            )
        return cls(
            indicator_type=condition.indicator_type,
            symbol=condition.symbol,
            interval=condition.interval,
            parameters=dict(condition.parameters),
            data_source=condition.data_source,
        )

    @property
    def fingerprint(self) -> str:
        return fingerprint(
            indicator_type=self.indicator_type,
            symbol=self.symbol,
            interval=self.interval,
            parameters=self.parameters,
            data_source=self.data_source,
        )

    @property
    def ttl_seconds(self) -> int:
        return ttl_for_interval(self.interval)


def fingerprint(
    indicator_type: str,
    symbol: str | None,
    interval: str | None,
    parameters: dict[str, Any] | None = None,
    data_source: str | None = None,
) -> str:
    """Deterministic identity of an indicator request.

    Keys are sorted recursively, including inside ``parameters``, and
    ``None`` fields are left out, so field order never changes the result.

    Example:
        >>> fingerprint("SMA", "AAPL", "daily", {"time_period": "20"})
        'indicator:{"indicator_type":"SMA","interval":"daily","parameters":{"time_period":"20"},"symbol":"AAPL"}'
    """
    fields = {
        "indicator_type": indicator_type,
        "symbol": symbol,
        "interval": interval,
        "parameters": parameters,
        "data_source": data_source,
    }
    present = {k: v for k, v in fields.items() if v is not None}
    canonical = orjson.dumps(present, option=orjson.OPT_SORT_KEYS)
    return FINGERPRINT_PREFIX + canonical.decode()


def condition_fingerprint(condition: Condition) -> str:
    """Fingerprint of the indicator a condition reads."""
    return fingerprint(
        indicator_type=condition.indicator_type,
        symbol=condition.symbol,
        interval=condition.interval,
        parameters=condition.parameters,
        data_source=condition.data_source,
    )


def ttl_for_interval(interval: str) -> int:
    """Cache TTL in seconds for a provider interval."""
    return INTERVAL_TTL_SECONDS.get(interval, DEFAULT_TTL_SECONDS)


def refresh_interval_for(interval: str) -> int | None:
    """Seconds between refresh ticks, or None if the interval is unsupported."""
    return INTERVAL_REFRESH_SECONDS.get(interval)
