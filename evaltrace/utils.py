"""Shared utility functions used across evaltrace modules."""
from __future__ import annotations

import json
import math
from typing import Any, Iterable

_MISSING = object()


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def mean(values: Iterable[float]) -> float | None:
    """Arithmetic mean, or None for an empty input."""
    vals = list(values)
    if not vals:
        return None
    return sum(vals) / len(vals)


def population_stdev(values: Iterable[float]) -> float:
    """``sqrt(mean((x - mean)^2))``; 0.0 for fewer than two values."""
    vals = list(values)
    if len(vals) < 2:
        return 0.0
    avg = sum(vals) / len(vals)
    return math.sqrt(sum((v - avg) ** 2 for v in vals) / len(vals))


def percent(part: float, whole: float) -> float:
    """``part / whole * 100`` with a zero denominator mapped to 0."""
    if whole <= 0:
        return 0.0
    return part / whole * 100
