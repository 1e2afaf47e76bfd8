# aeo_dashboard/integrations/google_workspace/date_ranges.py
"""
Relative reporting windows.

Search Console and GA4 lag by about a day, so every preset ends yesterday
and counts backward from there.
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

DAY_PRESETS = {'7d': 7, '28d': 28}
MONTH_PRESETS = {'3m': 3, '6m': 6, '12m': 12, '16m': 16}
DEFAULT_PRESET = '28d'

PRESETS = list(DAY_PRESETS) + list(MONTH_PRESETS)


@dataclass(frozen=True)
class DateRange:
    start_date: str
    end_date: str


def _months_before(day: date, months: int) -> date:
    """Same day-of-month ``months`` earlier, clamped to that month's length."""
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def get_date_range(preset: Optional[str] = None, today: Optional[date] = None) -> DateRange:
    """
    Resolve a preset (7d, 28d, 3m, 6m, 12m, 16m) to ISO dates.

    Unknown presets fall back to 28d.
    """
    end = (today or date.today()) - timedelta(days=1)

    if preset in DAY_PRESETS:
        start = end - timedelta(days=DAY_PRESETS[preset])
    elif preset in MONTH_PRESETS:
        start = _months_before(end, MONTH_PRESETS[preset])
    else:
        start = end - timedelta(days=DAY_PRESETS[DEFAULT_PRESET])

    return DateRange(start_date=start.isoformat(), end_date=end.isoformat())
