"""
BinWatch — Dashboard Stats
Today's totals for the dashboard header cards.
"""
from datetime import timedelta
from zoneinfo import ZoneInfo

from alerting.models import ALERTS, READINGS, utcnow
from alerting.registry import BinRegistry
from config.settings import DASHBOARD_FULL_PCT, DASHBOARD_TIMEZONE


def day_bounds(now, tz_name=DASHBOARD_TIMEZONE):
    """[midnight, next midnight) of `now`'s local day, as aware datetimes."""
    local = now.astimezone(ZoneInfo(tz_name))
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def dashboard_stats(store, now=None, tz_name=DASHBOARD_TIMEZONE, registry=None):
    """
    Returns:
        {todayTotal, activeBins, fullBins, recentAlerts}
    fullBins counts active bins whose latest reading is at least
    DASHBOARD_FULL_PCT percent full.
    """
    registry = registry or BinRegistry(store)
    today, tomorrow = day_bounds(now or utcnow(), tz_name)

    today_readings = store.query(READINGS, range_field="ts", start=today, end=tomorrow)
    today_total = sum(r.get("weightKg") or 0 for r in today_readings)

    active_bins = 0
    full_bins = 0
    for bin_ in registry.active_bins():
        active_bins += 1
        latest = store.query(READINGS, filters={"binId": bin_.id}, order_by="ts", descending=True, limit=1)
        if latest and (latest[0].get("percentFull") or 0) >= DASHBOARD_FULL_PCT:
            full_bins += 1

    recent_alerts = store.query(ALERTS, range_field="ts", start=today)

    return {
        "todayTotal": today_total,
        "activeBins": active_bins,
        "fullBins": full_bins,
        "recentAlerts": len(recent_alerts),
    }
