from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from django.conf import settings

ZERO = Decimal("0")
ONE = Decimal("1")

MIN_PRECISION = 2
MAX_PRECISION = 6

PREFIX_RE = re.compile(r"^\d{1,15}$")
_NUMBER_NOISE_RE = re.compile(r"[\s\-().]")

_ENGINE_DEFAULTS = {
    "DEFAULT_BILLING_PRECISION": 4,
    "REBUILD_MAX_WORKERS": 1,
    "AUTO_REBUILD_ON_PUBLISH": False,
    "IMPORT_DEFAULT_BILLING_INCREMENT": "60/60",
}


def d(val) -> Decimal:
    """Coerce incoming values to Decimal safely."""
    if isinstance(val, Decimal):
        return val
    return Decimal(str(val))


def parse_decimal(val) -> Optional[Decimal]:
    """Like d(), but returns None for blanks and garbage instead of raising."""
    if val is None:
        return None
    if isinstance(val, str):
        val = val.strip()
        if not val:
            return None
    try:
        out = d(val)
    except (InvalidOperation, ValueError):
        return None
    if not out.is_finite():
        return None
    return out


def quantum(precision: int) -> Decimal:
    """Decimal step for a precision, e.g. 4 -> Decimal('0.0001')."""
    return Decimal(1).scaleb(-int(precision))


def round_half_up(amount, precision: int) -> Decimal:
    """Round to `precision` decimal digits, halves away from zero (0.00005 -> 0.0001)."""
    return d(amount).quantize(quantum(precision), rounding=ROUND_HALF_UP)


def validate_precision(precision) -> int:
    p = int(precision)
    if p < MIN_PRECISION or p > MAX_PRECISION:
        raise ValueError(f"billing precision must be between {MIN_PRECISION} and {MAX_PRECISION}, got {p}")
    return p


def normalize_number(raw: str) -> str:
    """Strip the usual dialing noise ('+', spaces, dashes, brackets) from a number."""
    text = _NUMBER_NOISE_RE.sub("", (raw or "").strip())
    if text.startswith("+"):
        text = text[1:]
    return text


def engine_setting(name: str):
    """Read one key of settings.RATECARDS, falling back to the built-in default."""
    conf = getattr(settings, "RATECARDS", None) or {}
    if name in conf:
        return conf[name]
    return _ENGINE_DEFAULTS[name]
