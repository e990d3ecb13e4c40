"""Human-readable rendering of power and duration readings."""

from __future__ import annotations

import math
from typing import Optional

PLACEHOLDER = "—"


def format_power(power_watts: Optional[float]) -> str:
    """``"112.5 W"``, ``"1.25 kW"``, or a dash when the power is unknown."""
    if power_watts is None or math.isnan(power_watts):
        return PLACEHOLDER
    if power_watts >= 1000:
        return f"{power_watts / 1000:.2f} kW"
    return f"{power_watts:.1f} W"


def format_duration(seconds: float) -> str:
    """``"42.0 s"`` under a minute, ``"3m 5s"`` above."""
    if not math.isfinite(seconds) or seconds < 0:
        return PLACEHOLDER
    if seconds < 60:
        return f"{seconds:.1f} s"
    minutes = int(seconds // 60)
    remaining = seconds % 60
    return f"{minutes}m {remaining:.0f}s"
