"""
BinWatch — Alert Levels
Maps percent-full to the alert kind a bin should currently carry.
Levels: none → warning (80) → full (95)
"""
import math

from alerting.models import AlertKind
from config.settings import ALERT_LEVELS


def round_half_up(value):
    """Round .5 away from zero for non-negative values (Python's round() is banker's)."""
    return int(math.floor(value + 0.5))


def clamp_percent(value):
    return max(0, min(100, round_half_up(value)))


def percent_full(weight_kg, capacity_kg):
    """Weight over capacity as an integer percent, capped at 100."""
    return min(round_half_up(weight_kg / capacity_kg * 100), 100)


def target_level(pct):
    """Alert kind for a percent-full value, or None below every level."""
    for level in sorted(ALERT_LEVELS, key=lambda l: l["min_pct"], reverse=True):
        if pct >= level["min_pct"]:
            return AlertKind(level["kind"])
    return None


def alert_message(bin_id, kind, pct):
    pct = clamp_percent(pct)
    if AlertKind(kind) is AlertKind.FULL:
        return f"Bin {bin_id} is {pct}% full and needs immediate attention"
    return f"Bin {bin_id} is {pct}% full - approaching capacity"


def fill_status(pct):
    """Console marker used by the simulator."""
    if pct >= 90:
        return "🔴"
    if pct >= 80:
        return "🟡"
    return "🟢"
