"""Tracker Service - orchestrates the core calculations over the store.

Every public method runs to completion within the calling request (or one
user's turn of the weekly batch). State lives only in Firestore; goal
progress is recomputed from activities instead of being accumulated, so
concurrent recomputations converge on the same value.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from ..core.aggregation import (
    build_leaderboard,
    build_user_stats,
    community_stats,
    daily_breakdown,
    period_start,
    weekly_summary,
)
from ..core.emissions import calculate_co2_emission
from ..core.errors import DuplicateGoalError, InvalidInputError, NotFoundError
from ..core.goals import (
    baseline_window,
    build_achievement_insight,
    build_goal,
    evaluate_goal,
    find_open_goal,
    is_activity_category,
    is_goal_open,
    progress_percentage,
    validate_status,
    validate_target,
)
from ..core.insights import analyze_emissions, build_tip, build_weekly_goal
from ..core.models import (
    Activity,
    CommunityStats,
    EmissionAnalysis,
    Goal,
    GoalProgress,
    Insight,
    LeaderboardEntry,
    UserStats,
    WeekBucket,
    utcnow,
)
from .firestore_client import FootprintFirestoreClient
from .notifications import NotificationHub


logger = logging.getLogger(__name__)


@dataclass
class BatchReport:
    """Outcome of one weekly batch run."""

    processed: int = 0
    skipped: int = 0
    failed: list[str] = field(default_factory=list)


def _all_to_none(value: str | None) -> str | None:
    return None if value in (None, "", "all") else value


class FootprintTracker:
    """Application service used by the MCP tools, HTTP routes and batch job."""

    def __init__(
        self,
        store: FootprintFirestoreClient,
        notifier: NotificationHub | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the tracker.

        Args:
            store: Persistence client
            notifier: Where real-time events are published
            rng: Randomness for tips and generated goals
            clock: Returns the current aware UTC time
        """
        self.store = store
        self.notifier = notifier or NotificationHub()
        self.rng = rng or random.Random()
        self.clock = clock

    def _publish(self, user_id: str, event: str, payload) -> None:
        self.notifier.publish(user_id, event, payload)

    # ==================== Activities ====================

    def log_activity(
        self,
        user_id: str,
        name: str,
        category: str,
        amount: float,
        unit: str,
        occurred_at: datetime | None = None,
    ) -> Activity:
        """Record an activity with a server-computed emission.

        Raises:
            InvalidInputError: On a missing field, unknown category or amount <= 0
        """
        if not name or not category or amount is None or not unit:
            raise InvalidInputError("Please provide all required fields")
        if not is_activity_category(category):
            raise InvalidInputError("Category must be one of: transport, food, energy, other")
        if amount <= 0:
            raise InvalidInputError("Amount must be greater than 0")

        now = self.clock()
        activity = Activity(
            user_id=user_id,
            name=name,
            category=category,
            amount=amount,
            unit=unit,
            co2_emission=calculate_co2_emission(name, amount, category),
            date=occurred_at or now,
            created_at=now,
        )
        self.store.add_activity(activity)
        self._publish(user_id, "activity-added", activity.model_dump(mode="json"))
        return activity

    def list_activities(
        self,
        user_id: str,
        category: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
    ) -> list[Activity]:
        return self.store.query_activities(
            user_id=user_id,
            category=_all_to_none(category),
            start=start,
            end=end,
            limit=limit,
        )

    def delete_activity(self, user_id: str, activity_id: str) -> None:
        """Delete an activity owned by ``user_id``.

        Raises:
            NotFoundError: If missing or owned by someone else
        """
        activity = self.store.get_activity(activity_id)
        if activity is None or activity.user_id != user_id:
            raise NotFoundError("Activity")
        self.store.delete_activity(activity_id)

    # ==================== Dashboard ====================

    def get_user_stats(self, user_id: str) -> UserStats:
        activities = self.store.query_activities(user_id=user_id)
        return build_user_stats(activities, self.clock())

    def get_community_stats(self) -> CommunityStats:
        return community_stats(self.store.query_activities())

    def get_leaderboard(self, period: str = "month", limit: int = 10) -> list[LeaderboardEntry]:
        """Rank users with the lowest emissions first.

        Args:
            period: week, month, year or all (anything else means all)
            limit: Maximum rows
        """
        since = period_start(period, self.clock())
        activities = self.store.query_activities(start=since)
        usernames = {user_id: user.username for user_id, user in self.store.list_users().items()}
        return build_leaderboard(activities, usernames, limit)

    def get_weekly_summary(self, user_id: str, weeks: int = 8) -> list[WeekBucket]:
        return weekly_summary(self.store.query_activities(user_id=user_id), weeks)

    # ==================== Goals ====================

    def _owned_goal(self, user_id: str, goal_id: str) -> Goal:
        goal = self.store.get_goal(goal_id)
        if goal is None or goal.user_id != user_id:
            raise NotFoundError("Goal")
        return goal

    def create_goal(
        self,
        user_id: str,
        goal_type: str,
        target_reduction: float,
        category: str = "overall",
    ) -> Goal:
        """Create a goal starting now.

        Raises:
            InvalidInputError: On invalid type, category or target
            DuplicateGoalError: If an open goal of the same type exists
        """
        now = self.clock()
        goal = build_goal(user_id, goal_type, target_reduction, category, now)

        existing = self.store.list_goals(user_id, status="active", goal_type=goal_type)
        if find_open_goal(existing, goal_type, now) is not None:
            raise DuplicateGoalError(goal_type)

        self.store.save_goal(goal)
        self._publish(user_id, "goal-created", goal.model_dump(mode="json"))
        return goal

    def list_goals(self, user_id: str, status: str = "active", goal_type: str = "weekly") -> list[Goal]:
        """List goals; active goals get their progress refreshed first."""
        if status == "active":
            self.update_goal_progress(user_id)
        return self.store.list_goals(
            user_id,
            status=_all_to_none(status),
            goal_type=_all_to_none(goal_type),
        )

    def update_goal(
        self,
        user_id: str,
        goal_id: str,
        target_reduction: float | None = None,
        status: str | None = None,
    ) -> Goal:
        """Change a goal's target and/or status.

        Raises:
            NotFoundError: If missing or owned by someone else
            InvalidInputError: On a non-positive target or unknown status
            DuplicateGoalError: If reactivating while another goal of the type is open
        """
        goal = self._owned_goal(user_id, goal_id)
        updates: dict = {}
        if target_reduction is not None:
            validate_target(target_reduction)
            updates["target_reduction"] = target_reduction
        if status is not None:
            validate_status(status)
            if status == "active":
                others = [
                    g for g in self.store.list_goals(user_id, status="active", goal_type=goal.type)
                    if g.id != goal.id
                ]
                if find_open_goal(others, goal.type, self.clock()) is not None:
                    raise DuplicateGoalError(goal.type)
            updates["status"] = status

        goal = goal.model_copy(update=updates)
        self.store.save_goal(goal)
        self._publish(user_id, "goal-updated", goal.model_dump(mode="json"))
        return goal

    def delete_goal(self, user_id: str, goal_id: str) -> None:
        self._owned_goal(user_id, goal_id)
        self.store.delete_goal(goal_id)
        self._publish(user_id, "goal-deleted", {"goal_id": goal_id})

    def _goal_activities(self, goal: Goal, start: datetime, end: datetime, end_inclusive: bool = True) -> list[Activity]:
        category = None if goal.category == "overall" else goal.category
        return self.store.query_activities(
            user_id=goal.user_id,
            category=category,
            start=start,
            end=end,
            end_inclusive=end_inclusive,
        )

    def get_goal_progress(self, user_id: str, goal_id: str) -> GoalProgress:
        """Goal details with its activities and per-day emissions.

        Raises:
            NotFoundError: If missing or owned by someone else
        """
        goal = self._owned_goal(user_id, goal_id)
        activities = self._goal_activities(goal, goal.start_date, self.clock())

        return GoalProgress(
            goal=goal,
            activities=activities,
            daily_progress=daily_breakdown(activities),
            progress_percentage=progress_percentage(goal),
            baseline_start=baseline_window(goal)[0],
        )

    def update_goal_progress(self, user_id: str) -> list[Goal]:
        """Recompute progress for each open goal of a user.

        Progress is overwritten with the reduction against the baseline
        window. A goal reaching its target becomes completed and yields an
        achievement insight. Goals are never marked failed here.

        Returns:
            The refreshed goals
        """
        now = self.clock()
        refreshed: list[Goal] = []

        for goal in self.store.list_goals(user_id, status="active"):
            if not is_goal_open(goal, now):
                continue

            baseline_start, baseline_end = baseline_window(goal)
            current = self._goal_activities(goal, goal.start_date, now)
            baseline = self._goal_activities(goal, baseline_start, baseline_end, end_inclusive=False)
            evaluation = evaluate_goal(goal, baseline, current)

            updates: dict = {"current_progress": evaluation.actual_reduction}
            if evaluation.completed:
                updates["status"] = "completed"
            goal = goal.model_copy(update=updates)
            self.store.save_goal(goal)

            if evaluation.completed:
                logger.info("Goal %s completed for %s", goal.id[:8], user_id[:8])
                achievement = self.store.save_insight(
                    build_achievement_insight(goal, evaluation.actual_reduction, now)
                )
                self._publish(user_id, "goal-completed", {
                    "goal": goal.model_dump(mode="json"),
                    "insight": achievement.model_dump(mode="json"),
                })

            refreshed.append(goal)

        return refreshed

    # ==================== Insights ====================

    def analyze_user(self, user_id: str) -> EmissionAnalysis:
        """Category totals over the trailing 7 and 30 days."""
        now = self.clock()
        weekly = self.store.query_activities(user_id=user_id, start=now - timedelta(days=7))
        monthly = self.store.query_activities(user_id=user_id, start=now - timedelta(days=30))
        return analyze_emissions(weekly, monthly)

    def generate_tip(self, user_id: str, analysis: EmissionAnalysis) -> Insight:
        tip = build_tip(user_id, analysis, self.rng, self.clock())
        return self.store.save_insight(tip)

    def run_analysis(self, user_id: str) -> tuple[EmissionAnalysis, Insight]:
        """Refresh goals, analyse recent emissions and store a new tip."""
        self.update_goal_progress(user_id)
        analysis = self.analyze_user(user_id)
        tip = self.generate_tip(user_id, analysis)
        self._publish(user_id, "new-insight", {
            "type": "analysis",
            "tip": tip.model_dump(mode="json"),
            "analysis": analysis.model_dump(mode="json"),
        })
        return analysis, tip

    def list_insights(self, user_id: str, limit: int = 10, unread_only: bool = False) -> list[Insight]:
        return self.store.list_insights(user_id, self.clock(), unread_only=unread_only, limit=limit)

    def mark_insight_read(self, user_id: str, insight_id: str) -> None:
        insight = self.store.get_insight(insight_id)
        if insight is None or insight.user_id != user_id:
            raise NotFoundError("Insight")
        self.store.mark_insight_read(insight_id)

    def get_live_tip(self, user_id: str) -> Insight:
        """Latest valid tip, generating one when none exists."""
        tips = self.store.list_insights(user_id, self.clock(), insight_type="tip", limit=1)
        if tips:
            return tips[0]
        return self.generate_tip(user_id, self.analyze_user(user_id))

    def generate_weekly_goal(self, user_id: str, analysis: EmissionAnalysis) -> Goal:
        """Create a weekly goal unless the user already has an open one."""
        now = self.clock()
        existing = find_open_goal(
            self.store.list_goals(user_id, status="active", goal_type="weekly"), "weekly", now
        )
        if existing is not None:
            return existing

        goal, announcement = build_weekly_goal(user_id, analysis, self.rng, now)
        self.store.save_goal(goal)
        self.store.save_insight(announcement)
        return goal

    def run_weekly_batch(self) -> BatchReport:
        """Generate a tip and weekly goal for every user active last week.

        A failure for one user is logged and the batch moves on.
        """
        report = BatchReport()
        users = self.store.list_users()
        logger.info("Running weekly analysis for %d users", len(users))

        for user_id in users:
            try:
                analysis = self.analyze_user(user_id)
                if analysis.activities_count == 0:
                    report.skipped += 1
                    continue

                tip = self.generate_tip(user_id, analysis)
                goal = self.generate_weekly_goal(user_id, analysis)
                self._publish(user_id, "new-insight", {
                    "type": "weekly-analysis",
                    "tip": tip.model_dump(mode="json"),
                    "goal": goal.model_dump(mode="json"),
                    "analysis": analysis.model_dump(mode="json"),
                })
                report.processed += 1
            except Exception:
                logger.exception("Weekly analysis failed for user %s", user_id[:8])
                report.failed.append(user_id)

        logger.info(
            "Weekly analysis done: %d processed, %d skipped, %d failed",
            report.processed, report.skipped, len(report.failed),
        )
        return report
