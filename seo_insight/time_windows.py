from __future__ import annotations

from datetime import date, timedelta

from seo_insight.errors import InvalidRangeError
from seo_insight.models import COMPARISON_MODES, DateWindow


PRESETS = (
    "yesterday",
    "last7",
    "last28",
    "last30",
    "last60",
    "last90",
    "last1year",
    "prevYear",
)


def _require_ordered(active: DateWindow) -> None:
    if active.end < active.start:
        raise InvalidRangeError(
            f"Date window ends before it starts: {active.start.isoformat()} > {active.end.isoformat()}"
        )


def _shift_year(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        # Feb 29 in a non-leap target year.
        return day.replace(year=day.year - years, day=28)


def derive_previous_window(active: DateWindow) -> DateWindow:
    """Window of the same length ending the day before ``active`` starts."""
    _require_ordered(active)
    days = active.days
    previous_end = active.start - timedelta(days=1)
    previous_start = previous_end - timedelta(days=days - 1)
    return DateWindow(previous_start, previous_end, "Previous period")


def derive_previous_year_window(active: DateWindow) -> DateWindow:
    """Same calendar dates one year back; Feb 29 clamps to Feb 28."""
    _require_ordered(active)
    return DateWindow(
        _shift_year(active.start, 1),
        _shift_year(active.end, 1),
        "Previous year",
    )


def comparison_window(active: DateWindow, mode: str) -> DateWindow:
    normalized = str(mode).strip().lower()
    if normalized == "previous_period":
        return derive_previous_window(active)
    if normalized == "previous_year":
        return derive_previous_year_window(active)
    raise ValueError(f"Unknown comparison mode: {mode!r} (expected one of {COMPARISON_MODES})")


def preset_window(preset: str, today: date | None = None) -> DateWindow:
    today = today or date.today()

    if preset == "yesterday":
        day = today - timedelta(days=1)
        return DateWindow(day, day, "Yesterday")
    if preset == "last1year":
        return DateWindow(_shift_year(today, 1), today, "Last 1 year")
    if preset == "prevYear":
        year = today.year - 1
        return DateWindow(date(year, 1, 1), date(year, 12, 31), f"Year {year}")
    if preset in PRESETS and preset.startswith("last"):
        days = int(preset[len("last"):])
        return DateWindow(today - timedelta(days=days), today, f"Last {days} days")

    raise ValueError(f"Unknown date preset: {preset!r} (expected one of {PRESETS})")


def default_window(today: date | None = None) -> DateWindow:
    return preset_window("last30", today)
