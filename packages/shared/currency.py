"""Paise/rupee helpers shared by the API service and the client core.

All monetary values inside Manacity are integers in paise (1/100 rupee).
"""

from __future__ import annotations

import math
from typing import Any


def _to_number(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0
    try:
        parsed = float(str(value).strip())
    except ValueError:
        return 0.0
    return parsed if math.isfinite(parsed) else 0.0


def is_number(value: Any) -> bool:
    if isinstance(value, bool) or value is None:
        return False
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    try:
        return math.isfinite(float(str(value).strip()))
    except ValueError:
        return False


def to_paise(value: Any) -> int:
    """Treat ``value`` as paise already and round it to an integer."""

    return int(round(_to_number(value)))


def rupees_to_paise(value: Any) -> int:
    return int(round(_to_number(value) * 100))


def non_negative(paise: int) -> int:
    return max(0, paise)


def pick_paise(*values: Any) -> int | None:
    for candidate in values:
        if is_number(candidate):
            return to_paise(candidate)
    return None


def format_inr(paise: Any) -> str:
    """Render paise as rupees with Indian digit grouping, e.g. ``₹1,23,456.78``."""

    amount = to_paise(paise)
    sign = "-" if amount < 0 else ""
    rupees, fraction = divmod(abs(amount), 100)

    digits = str(rupees)
    if len(digits) > 3:
        head, tail = digits[:-3], digits[-3:]
        groups: list[str] = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        digits = ",".join(groups) + "," + tail

    return f"{sign}₹{digits}.{fraction:02d}"
