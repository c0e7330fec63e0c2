"""Percentage helpers."""

from __future__ import annotations

import math


def percent(part: float, whole: float) -> int:
    """Return ``part / whole`` as a whole percentage, rounding half up.

    A zero or negative ``whole`` yields 0 instead of raising.
    """
    if whole <= 0:
        return 0
    return int(math.floor((part / whole) * 100 + 0.5))
