"""Goal Progress - Pure functions for goal windows and completion.

Progress is the reduction of the goal window's emissions against the
equally long window just before it. It is recomputed from activities each
time, never accumulated, so re-evaluating with the same activities gives
the same result.
"""

import calendar
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .errors import InvalidInputError
from .models import (
    ACTIVITY_CATEGORIES,
    GOAL_CATEGORIES,
    Activity,
    Goal,
    GoalEvaluation,
    Insight,
)


GOAL_TYPES = ("weekly", "monthly")
GOAL_STATUSES = ("active", "completed", "failed")


def add_one_month(moment: datetime) -> datetime:
    """Same day next month, clamped to the last day of a shorter month."""
    year = moment.year + moment.month // 12
    month = moment.month % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def goal_end_date(goal_type: str, start: datetime) -> datetime:
    """End of a goal window: 7 days for weekly, one calendar month for monthly."""
    if goal_type == "weekly":
        return start + timedelta(days=7)
    if goal_type == "monthly":
        return add_one_month(start)
    raise InvalidInputError(f"Unknown goal type: {goal_type}")


def baseline_window(goal: Goal) -> tuple[datetime, datetime]:
    """The window of equal length immediately before the goal starts.

    Returns:
        (start inclusive, end exclusive)
    """
    length = goal.end_date - goal.start_date
    return goal.start_date - length, goal.start_date


def matches_goal_category(activity: Activity, category: str) -> bool:
    """True when the activity counts toward a goal of ``category``."""
    return category == "overall" or activity.category == category


def sum_for_category(activities: Iterable[Activity], category: str) -> float:
    return sum(a.co2_emission for a in activities if matches_goal_category(a, category))


def calculate_reduction(baseline_emissions: float, current_emissions: float) -> float:
    """Reduction achieved; an increase counts as zero, never negative."""
    return max(0.0, baseline_emissions - current_emissions)


def evaluate_goal(
    goal: Goal,
    baseline_activities: Iterable[Activity],
    current_activities: Iterable[Activity],
) -> GoalEvaluation:
    """Compare the current window against the baseline window.

    Args:
        goal: The goal being evaluated
        baseline_activities: Activities dated inside the baseline window
        current_activities: Activities dated from goal start until now

    Returns:
        GoalEvaluation; completed once the reduction reaches the target
    """
    current = sum_for_category(current_activities, goal.category)
    baseline = sum_for_category(baseline_activities, goal.category)
    reduction = calculate_reduction(baseline, current)

    return GoalEvaluation(
        current_emissions=current,
        baseline_emissions=baseline,
        actual_reduction=reduction,
        completed=reduction >= goal.target_reduction,
    )


def progress_percentage(goal: Goal) -> float:
    """Progress toward the target for display, capped at 100."""
    return min(100.0, goal.current_progress / goal.target_reduction * 100)


def is_goal_open(goal: Goal, now: datetime) -> bool:
    """Active and not yet past its end date."""
    return goal.status == "active" and goal.end_date > now


def find_open_goal(goals: Iterable[Goal], goal_type: str, now: datetime) -> Optional[Goal]:
    """First open goal of the given type, if any."""
    for goal in goals:
        if goal.type == goal_type and is_goal_open(goal, now):
            return goal
    return None


def validate_target(target_reduction: float) -> None:
    if target_reduction is None or target_reduction <= 0:
        raise InvalidInputError("Target reduction must be greater than 0")


def validate_status(status: str) -> None:
    if status not in GOAL_STATUSES:
        raise InvalidInputError(f"Status must be one of: {', '.join(GOAL_STATUSES)}")


def build_goal(
    user_id: str,
    goal_type: str,
    target_reduction: float,
    category: str,
    start: datetime,
) -> Goal:
    """Create a goal whose window is derived from its type.

    Raises:
        InvalidInputError: On an unknown type/category or a non-positive target
    """
    if goal_type not in GOAL_TYPES:
        raise InvalidInputError(f"Goal type must be one of: {', '.join(GOAL_TYPES)}")
    if category not in GOAL_CATEGORIES:
        raise InvalidInputError(f"Category must be one of: {', '.join(GOAL_CATEGORIES)}")
    validate_target(target_reduction)

    return Goal(
        user_id=user_id,
        type=goal_type,
        target_reduction=target_reduction,
        category=category,
        start_date=start,
        end_date=goal_end_date(goal_type, start),
        created_at=start,
    )


def build_achievement_insight(goal: Goal, actual_reduction: float, now: datetime) -> Insight:
    """Congratulation insight emitted when a goal completes."""
    return Insight(
        user_id=goal.user_id,
        type="achievement",
        category=goal.category,
        title="Goal Achieved! 🎉",
        message=(
            f"Congratulations! You've reduced your {goal.category} emissions "
            f"by {actual_reduction:.1f} kg CO2"
        ),
        data={
            "goal_id": goal.id,
            "actual_reduction": actual_reduction,
            "target_reduction": goal.target_reduction,
        },
        priority="high",
        created_at=now,
    )


def is_activity_category(category: str) -> bool:
    return category in ACTIVITY_CATEGORIES
