"""Streak Calculation - consecutive ISO weeks with logged activity.

Weeks are identified by ISO (year, week) pairs from ``date.isocalendar()``.
Stepping backwards is done with date arithmetic, so a streak running from
late December into January is not broken by the year change.
"""

from datetime import date, datetime, timedelta

from .models import WeekBucket


def current_iso_week(now: datetime) -> tuple[int, int]:
    """Return the ISO (year, week) containing ``now``."""
    iso = now.date().isocalendar()
    return iso[0], iso[1]


def previous_iso_week(year: int, week: int, weeks_back: int) -> tuple[int, int]:
    """Return the ISO week lying ``weeks_back`` weeks before (year, week)."""
    monday = date.fromisocalendar(year, week, 1) - timedelta(weeks=weeks_back)
    iso = monday.isocalendar()
    return iso[0], iso[1]


def calculate_streak(buckets: list[WeekBucket], current_year: int, current_week: int) -> int:
    """Count consecutive active weeks ending at the current week.

    Args:
        buckets: Weekly aggregates (any order; sorted newest first here)
        current_year: ISO year of the current week
        current_week: ISO week number of the current week

    Returns:
        Number of consecutive weeks, starting with the current one,
        that have at least one activity
    """
    active = sorted(
        (b for b in buckets if b.activity_count > 0),
        key=lambda b: (b.year, b.week),
        reverse=True,
    )

    streak = 0
    for i, bucket in enumerate(active):
        if (bucket.year, bucket.week) != previous_iso_week(current_year, current_week, i):
            break
        streak += 1

    return streak
