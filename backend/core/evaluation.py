"""Condition comparison semantics.

Pure functions used by the evaluation engine. Series payloads are the
provider's time-indexed data block, e.g.::

    {
        "2024-01-05": {"SMA": "155.2100"},
        "2024-01-04": {"SMA": "154.9800"},
    }

Timestamps sort lexicographically in the provider's format, so the most
recent point is the largest key.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from core.models.strategy import Operator

logger = logging.getLogger(__name__)

# Absolute tolerance for EQUALS / NOT_EQUALS
EQUALITY_EPSILON = 1e-4


def _to_float(value: Any) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


def point_value(point: Any, data_key: str | None = None) -> float | None:
    """Numeric value of one data point.

    Args:
        point: Mapping of field name to value for a single timestamp.
        data_key: Field to read. When None, the first numeric field is used.

    Returns:
        The value, or None if the point holds no usable number.
    """
    if not isinstance(point, dict):
        return _to_float(point)

    if data_key is not None:
        return _to_float(point.get(data_key))

    for value in point.values():
        number = _to_float(value)
        if number is not None:
            return number
    return None


def series_values(
    series: Any, data_key: str | None = None
) -> tuple[float | None, float | None]:
    """Current and previous values of a time-indexed series.

    Returns:
        ``(current, previous)``. ``current`` is None for an empty or unusable
        series; ``previous`` is None when there is only one point.
    """
    if not isinstance(series, dict) or not series:
        return None, None

    timestamps = sorted(series.keys(), reverse=True)
    current = point_value(series[timestamps[0]], data_key)
    previous = None
    if len(timestamps) > 1:
        previous = point_value(series[timestamps[1]], data_key)
    return current, previous


def compare(
    operator: Operator,
    current: float,
    target: float,
    previous: float | None = None,
) -> bool:
    """Apply a condition operator.

    Crossover operators need the previous value and are false without it.
    """
    if operator == Operator.GREATER_THAN:
        return current > target
    if operator == Operator.LESS_THAN:
        return current < target
    if operator == Operator.GREATER_THAN_OR_EQUAL:
        return current >= target
    if operator == Operator.LESS_THAN_OR_EQUAL:
        return current <= target
    if operator == Operator.EQUALS:
        return abs(current - target) < EQUALITY_EPSILON
    if operator == Operator.NOT_EQUALS:
        return abs(current - target) >= EQUALITY_EPSILON
    if operator == Operator.CROSSES_ABOVE:
        if previous is None:
            return False
        return previous <= target and current > target
    if operator == Operator.CROSSES_BELOW:
        if previous is None:
            return False
        return previous >= target and current < target

    logger.warning(f"Unsupported operator: {operator}")
    return False
