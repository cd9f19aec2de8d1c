"""Atomic-unit amount helpers.

Amounts travel as decimal strings and are compared as unbounded Python
integers. Floats are rejected outright so no value ever loses precision.
"""

from __future__ import annotations

import re
from decimal import Decimal

_DIGITS_RE = re.compile(r"^[0-9]+$")

USDC_DECIMALS = 6


def parse_atomic_units(value: int | str, field_name: str = "amount") -> int:
    """Parse a non-negative integer amount from an int or a decimal string."""
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be an integer string, got bool")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"{field_name} must be >= 0")
        return value
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be an integer string, got {type(value).__name__}")
    candidate = value.strip()
    if not _DIGITS_RE.match(candidate):
        raise ValueError(f"{field_name} must be a non-negative integer string: {value!r}")
    return int(candidate)


def format_token_amount(value: int, decimals: int = USDC_DECIMALS) -> str:
    """Render atomic units as a human amount, e.g. 5000 -> '0.005'."""
    scaled = Decimal(int(value)).scaleb(-decimals)
    text = format(scaled, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text
