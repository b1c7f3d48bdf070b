"""Emission Aggregation - Pure functions for dashboards and rankings.

All functions are pure: same input always produces same output, no side effects.
Grouping is done in memory over already-fetched activities.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .models import (
    Activity,
    CommunityStats,
    LeaderboardEntry,
    UserStats,
    WeekBucket,
)
from .streaks import calculate_streak, current_iso_week


def period_start(period: str, now: datetime) -> Optional[datetime]:
    """Get the lower date bound for a reporting period.

    Args:
        period: "week" (since Sunday), "month", "year" or "all"
        now: Reference time; its timezone is kept

    Returns:
        Midnight at the start of the period, or None for "all"
    """
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if period == "week":
        days_since_sunday = (now.weekday() + 1) % 7
        return midnight - timedelta(days=days_since_sunday)
    if period == "month":
        return midnight.replace(day=1)
    if period == "year":
        return midnight.replace(month=1, day=1)
    return None


def filter_since(activities: Iterable[Activity], since: Optional[datetime]) -> list[Activity]:
    """Keep activities dated at or after ``since`` (all when None)."""
    if since is None:
        return list(activities)
    return [a for a in activities if a.date >= since]


def total_emissions(activities: Iterable[Activity], since: Optional[datetime] = None) -> float:
    """Sum of co2_emission, optionally from a lower date bound."""
    return sum(a.co2_emission for a in filter_since(activities, since))


def category_breakdown(activities: Iterable[Activity]) -> dict[str, float]:
    """Total emission per category; only categories that occur are present."""
    totals: dict[str, float] = {}
    for activity in activities:
        totals[activity.category] = totals.get(activity.category, 0) + activity.co2_emission
    return totals


def daily_breakdown(activities: Iterable[Activity]) -> dict[str, float]:
    """Total emission per calendar day, keyed by YYYY-MM-DD."""
    totals: dict[str, float] = {}
    for activity in activities:
        day = activity.date.date().isoformat()
        totals[day] = totals.get(day, 0) + activity.co2_emission
    return totals


def totals_by_user(activities: Iterable[Activity]) -> dict[str, tuple[float, int]]:
    """Group by owner into (total emission, activity count)."""
    totals: dict[str, list] = defaultdict(lambda: [0.0, 0])
    for activity in activities:
        entry = totals[activity.user_id]
        entry[0] += activity.co2_emission
        entry[1] += 1
    return {user_id: (total, count) for user_id, (total, count) in totals.items()}


def community_stats(activities: Iterable[Activity]) -> CommunityStats:
    """Average per-user total across every user that logged something.

    Args:
        activities: Activities of all users

    Returns:
        CommunityStats, zeros when there are no activities
    """
    per_user = totals_by_user(activities)
    if not per_user:
        return CommunityStats()

    grand_total = sum(total for total, _ in per_user.values())
    return CommunityStats(
        average_emissions=grand_total / len(per_user),
        total_users=len(per_user),
    )


def build_leaderboard(
    activities: Iterable[Activity],
    usernames: dict[str, str],
    limit: int = 10,
) -> list[LeaderboardEntry]:
    """Rank users by total emissions, lowest first.

    Users without a known username are left out.

    Args:
        activities: Activities inside the leaderboard period
        usernames: Mapping of user_id to display name
        limit: Maximum rows returned

    Returns:
        Ranked entries, rank 1 being the lowest emitter
    """
    rows = [
        (user_id, total, count)
        for user_id, (total, count) in totals_by_user(activities).items()
        if user_id in usernames
    ]
    rows.sort(key=lambda row: row[1])

    return [
        LeaderboardEntry(
            rank=position,
            user_id=user_id,
            username=usernames[user_id],
            total_emissions=total,
            activity_count=count,
            avg_emission_per_activity=total / count,
        )
        for position, (user_id, total, count) in enumerate(rows[: max(limit, 0)], start=1)
    ]


def week_key(moment: datetime) -> tuple[int, int]:
    """ISO (year, week) for a timestamp."""
    iso = moment.date().isocalendar()
    return iso[0], iso[1]


def weekly_summary(activities: Iterable[Activity], weeks: Optional[int] = 8) -> list[WeekBucket]:
    """Bucket activities by ISO week, newest week first.

    Args:
        activities: A user's activities
        weeks: Maximum number of buckets returned (None for all)

    Returns:
        WeekBuckets sorted by (year desc, week desc)
    """
    buckets: dict[tuple[int, int], dict] = {}
    for activity in activities:
        key = week_key(activity.date)
        bucket = buckets.setdefault(key, {"total": 0.0, "count": 0, "categories": {}})
        bucket["total"] += activity.co2_emission
        bucket["count"] += 1
        categories = bucket["categories"]
        categories[activity.category] = categories.get(activity.category, 0) + activity.co2_emission

    ordered = sorted(buckets.items(), key=lambda item: item[0], reverse=True)
    if weeks is not None:
        ordered = ordered[: max(weeks, 0)]

    return [
        WeekBucket(
            year=year,
            week=week,
            total_emissions=data["total"],
            activity_count=data["count"],
            category_breakdown=data["categories"],
        )
        for (year, week), data in ordered
    ]


def build_user_stats(activities: list[Activity], now: datetime) -> UserStats:
    """Compute the dashboard numbers for one user's activities.

    Args:
        activities: All activities of the user
        now: Reference time for the week/month bounds and the streak

    Returns:
        UserStats with totals, breakdown and weekly streak
    """
    year, week = current_iso_week(now)

    return UserStats(
        total_emissions=total_emissions(activities),
        weekly_emissions=total_emissions(activities, period_start("week", now)),
        monthly_emissions=total_emissions(activities, period_start("month", now)),
        category_breakdown=category_breakdown(activities),
        weekly_streak=calculate_streak(weekly_summary(activities, weeks=None), year, week),
    )
