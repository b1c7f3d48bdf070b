"""Unit tests for goal calculations - pure functions, no mocks needed."""

from datetime import datetime, timedelta, timezone

import pytest

from footprint.core.errors import InvalidInputError
from footprint.core.models import Activity, Goal
from footprint.core.goals import (
    add_one_month,
    baseline_window,
    build_achievement_insight,
    build_goal,
    calculate_reduction,
    evaluate_goal,
    find_open_goal,
    goal_end_date,
    is_goal_open,
    progress_percentage,
    validate_status,
)


START = datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc)


def activity(co2: float, category: str = "transport") -> Activity:
    return Activity(
        user_id="user-a",
        name="Test",
        category=category,
        amount=1,
        unit="unit",
        co2_emission=co2,
        date=START,
    )


def weekly_goal(target: float = 5, category: str = "transport", **kwargs) -> Goal:
    return Goal(
        user_id="user-a",
        type="weekly",
        target_reduction=target,
        category=category,
        start_date=START,
        end_date=START + timedelta(days=7),
        **kwargs,
    )


class TestGoalWindows:
    """Tests for goal_end_date and baseline_window."""

    def test_weekly_is_seven_days(self):
        assert goal_end_date("weekly", START) == START + timedelta(days=7)

    def test_monthly_is_calendar_month(self):
        """Monthly goals end on the same day next month."""
        assert goal_end_date("monthly", START) == datetime(2024, 4, 10, 9, 0, tzinfo=timezone.utc)

    def test_monthly_clamps_to_month_end(self):
        """Jan 31 plus one month is Feb 29 in a leap year."""
        jan_31 = datetime(2024, 1, 31, tzinfo=timezone.utc)
        assert add_one_month(jan_31) == datetime(2024, 2, 29, tzinfo=timezone.utc)

    def test_monthly_december_rolls_year(self):
        dec_15 = datetime(2024, 12, 15, tzinfo=timezone.utc)
        assert add_one_month(dec_15) == datetime(2025, 1, 15, tzinfo=timezone.utc)

    def test_unknown_type_rejected(self):
        with pytest.raises(InvalidInputError):
            goal_end_date("daily", START)

    def test_baseline_is_preceding_window(self):
        """Baseline has the goal's length and ends at its start."""
        goal = weekly_goal()
        start, end = baseline_window(goal)
        assert start == START - timedelta(days=7)
        assert end == START


class TestCalculateReduction:
    """Tests for calculate_reduction."""

    def test_reduction(self):
        assert calculate_reduction(20, 12) == 8

    def test_increase_gives_zero(self):
        """Higher current emissions never produce negative progress."""
        assert calculate_reduction(10, 25) == 0


class TestEvaluateGoal:
    """Tests for evaluate_goal."""

    def test_not_completed_below_target(self):
        goal = weekly_goal(target=5)
        result = evaluate_goal(goal, [activity(10)], [activity(6)])
        assert result.actual_reduction == pytest.approx(4)
        assert result.completed is False

    def test_completed_at_target(self):
        """Reaching the target exactly completes the goal."""
        goal = weekly_goal(target=5)
        result = evaluate_goal(goal, [activity(10)], [activity(5)])
        assert result.actual_reduction == pytest.approx(5)
        assert result.completed is True

    def test_increase_not_negative(self):
        goal = weekly_goal(target=5)
        result = evaluate_goal(goal, [activity(2)], [activity(9)])
        assert result.actual_reduction == 0
        assert result.completed is False

    def test_category_filter(self):
        """Only activities in the goal's category count."""
        goal = weekly_goal(target=5, category="food")
        baseline = [activity(10, "food"), activity(50, "transport")]
        current = [activity(4, "food")]
        result = evaluate_goal(goal, baseline, current)
        assert result.baseline_emissions == 10
        assert result.current_emissions == 4
        assert result.completed is True

    def test_overall_counts_everything(self):
        goal = weekly_goal(target=1, category="overall")
        baseline = [activity(3, "food"), activity(3, "energy")]
        result = evaluate_goal(goal, baseline, [activity(2, "other")])
        assert result.baseline_emissions == 6
        assert result.actual_reduction == 4

    def test_idempotent(self):
        """Evaluating twice with the same activities gives the same result."""
        goal = weekly_goal()
        baseline, current = [activity(9)], [activity(7)]
        assert evaluate_goal(goal, baseline, current) == evaluate_goal(goal, baseline, current)


class TestGoalHelpers:
    """Tests for percentage, open-goal lookup and builders."""

    def test_progress_percentage(self):
        assert progress_percentage(weekly_goal(target=8, current_progress=2)) == 25

    def test_progress_percentage_capped(self):
        assert progress_percentage(weekly_goal(target=4, current_progress=10)) == 100

    def test_is_goal_open(self):
        goal = weekly_goal()
        assert is_goal_open(goal, START + timedelta(days=1)) is True
        assert is_goal_open(goal, START + timedelta(days=8)) is False
        assert is_goal_open(weekly_goal(status="completed"), START) is False

    def test_find_open_goal_by_type(self):
        goals = [weekly_goal(status="completed"), weekly_goal()]
        assert find_open_goal(goals, "weekly", START) is goals[1]
        assert find_open_goal(goals, "monthly", START) is None

    def test_build_goal(self):
        goal = build_goal("user-a", "monthly", 12, "energy", START)
        assert goal.end_date == datetime(2024, 4, 10, 9, 0, tzinfo=timezone.utc)
        assert goal.status == "active"
        assert goal.current_progress == 0

    def test_build_goal_rejects_bad_input(self):
        with pytest.raises(InvalidInputError):
            build_goal("user-a", "weekly", 0, "energy", START)
        with pytest.raises(InvalidInputError):
            build_goal("user-a", "weekly", -3, "energy", START)
        with pytest.raises(InvalidInputError):
            build_goal("user-a", "yearly", 3, "energy", START)
        with pytest.raises(InvalidInputError):
            build_goal("user-a", "weekly", 3, "shopping", START)

    def test_validate_status(self):
        validate_status("failed")
        with pytest.raises(InvalidInputError):
            validate_status("abandoned")

    def test_achievement_insight(self):
        goal = weekly_goal(target=5, category="food")
        insight = build_achievement_insight(goal, 6.5, START)
        assert insight.type == "achievement"
        assert insight.category == "food"
        assert insight.priority == "high"
        assert insight.message == "Congratulations! You've reduced your food emissions by 6.5 kg CO2"
        assert insight.data["goal_id"] == goal.id
