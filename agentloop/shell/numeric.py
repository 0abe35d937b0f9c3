"""Fixed-point sanitizer for values headed into NUMERIC(precision, scale) columns
and exchange order fields.

Fails open: a bad number becomes the default instead of aborting a run.
"""

from __future__ import annotations

import math
from typing import Any

import structlog

log = structlog.get_logger()

DEFAULT_PRECISION = 18
DEFAULT_SCALE = 8


def _to_float(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return math.nan
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return math.nan


def max_abs_for(precision: int = DEFAULT_PRECISION, scale: int = DEFAULT_SCALE) -> float:
    return 10 ** (precision - scale) - 10 ** -scale


def sanitize_numeric(
    value: Any,
    *,
    precision: int = DEFAULT_PRECISION,
    scale: int = DEFAULT_SCALE,
    allow_negative: bool = True,
    default: float = 0.0,
    label: str | None = None,
) -> float:
    """Clamp and round ``value`` into the fixed-point domain.

    Non-finite or unparsable input returns ``default``. Values are clamped to
    ``[-max_abs, max_abs]`` (``[0, max_abs]`` when negatives are disallowed)
    and rounded half-up to ``scale`` decimal digits.
    """
    parsed = _to_float(value)
    if not math.isfinite(parsed):
        if label:
            log.warning("numeric.non_finite", label=label, value=repr(value), default=default)
        return default

    max_abs = max_abs_for(precision, scale)
    low = -max_abs if allow_negative else 0.0

    sanitized = min(max(parsed, low), max_abs)

    factor = 10 ** scale
    sanitized = math.floor(sanitized * factor + 0.5) / factor

    if sanitized != parsed and label:
        log.warning("numeric.adjusted", label=label, original=parsed, sanitized=sanitized)

    return sanitized


def to_number(value: Any, default: float = 0.0) -> float:
    """Lenient float parse used when reading ledger rows and exchange payloads."""
    parsed = _to_float(value)
    return parsed if math.isfinite(parsed) else default
