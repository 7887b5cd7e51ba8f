"""
Billing increment strings as carriers publish them.

"30/6" means the first 30 seconds are billed as a block, then every started
6 seconds. The first number becomes an entry's minimum duration and the second
its billing increment.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Tuple

VALID_BILLING_INCREMENTS = ("1/1", "6/6", "30/30", "60/60", "30/6", "60/6", "60/1")
DEFAULT_BILLING_INCREMENT = "60/60"

_SINGLE_RE = re.compile(r"^(\d+)$")
_FRACTION_RE = re.compile(r"^(\d+)/(\d+)$")


@dataclass(frozen=True)
class NormalizationResult:
    value: Optional[str]
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def normalize_billing_increment(raw, default: str = DEFAULT_BILLING_INCREMENT) -> NormalizationResult:
    if raw is None:
        return NormalizationResult(default)
    text = str(raw).strip().lower()
    if not text:
        return NormalizationResult(default)

    text = re.sub(r"[-:]", "/", text)
    text = re.sub(r"\s+", "", text)
    single = _SINGLE_RE.match(text)
    if single:
        text = f"{single.group(1)}/{single.group(1)}"

    m = _FRACTION_RE.match(text)
    if not m:
        return NormalizationResult(
            None, f'Invalid format "{raw}". Expected format like "60/60", "60/1", "30/6", etc.'
        )
    candidate = f"{int(m.group(1))}/{int(m.group(2))}"
    if candidate in VALID_BILLING_INCREMENTS:
        return NormalizationResult(candidate)
    return NormalizationResult(
        None, f'Invalid billing increment "{raw}". Valid values: {", ".join(VALID_BILLING_INCREMENTS)}'
    )


def split_increment(value: str) -> Tuple[int, int]:
    """'30/6' -> (30, 6): (minimum duration, billing increment) in seconds."""
    initial, increment = value.split("/", 1)
    return int(initial), int(increment)
