"""Shared fixtures for shell tests: an in-memory store and a frozen clock."""

import random
from datetime import datetime, timedelta, timezone

import pytest

from footprint.core.models import Activity, Goal, Insight, User
from footprint.shell.firestore_client import StoreError
from footprint.shell.notifications import NotificationHub
from footprint.shell.tracker import FootprintTracker


class InMemoryStore:
    """Dict-backed stand-in for FootprintFirestoreClient."""

    def __init__(self) -> None:
        self.users: dict[str, User] = {}
        self.activities: dict[str, Activity] = {}
        self.goals: dict[str, Goal] = {}
        self.insights: dict[str, Insight] = {}
        self.failing_users: set[str] = set()

    def add_user(self, user_id: str, username: str) -> None:
        self.users[user_id] = User(email=f"{username}@example.com", username=username, api_key_hash=user_id)

    def list_users(self):
        return dict(self.users)

    def add_activity(self, activity):
        self.activities[activity.id] = activity
        return activity

    def get_activity(self, activity_id):
        return self.activities.get(activity_id)

    def delete_activity(self, activity_id):
        self.activities.pop(activity_id, None)

    def query_activities(self, user_id=None, category=None, start=None, end=None, end_inclusive=True, limit=None):
        if user_id in self.failing_users:
            raise StoreError("Failed to query activities")
        result = [
            a for a in self.activities.values()
            if (user_id is None or a.user_id == user_id)
            and (category is None or a.category == category)
            and (start is None or a.date >= start)
            and (end is None or (a.date <= end if end_inclusive else a.date < end))
        ]
        result.sort(key=lambda a: a.date, reverse=True)
        return result[:limit] if limit is not None else result

    def save_goal(self, goal):
        self.goals[goal.id] = goal
        return goal

    def get_goal(self, goal_id):
        return self.goals.get(goal_id)

    def delete_goal(self, goal_id):
        self.goals.pop(goal_id, None)

    def list_goals(self, user_id, status=None, goal_type=None):
        result = [
            g for g in self.goals.values()
            if g.user_id == user_id
            and (status is None or g.status == status)
            and (goal_type is None or g.type == goal_type)
        ]
        return sorted(result, key=lambda g: g.created_at, reverse=True)

    def save_insight(self, insight):
        self.insights[insight.id] = insight
        return insight

    def get_insight(self, insight_id):
        return self.insights.get(insight_id)

    def mark_insight_read(self, insight_id):
        self.insights[insight_id] = self.insights[insight_id].model_copy(update={"is_read": True})

    def list_insights(self, user_id, valid_after, unread_only=False, insight_type=None, limit=None):
        result = [
            i for i in self.insights.values()
            if i.user_id == user_id
            and i.is_valid(valid_after)
            and (not unread_only or not i.is_read)
            and (insight_type is None or i.type == insight_type)
        ]
        result.sort(key=lambda i: i.created_at, reverse=True)
        return result[:limit] if limit is not None else result


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def clock():
    # Wednesday afternoon
    return FrozenClock(datetime(2024, 3, 13, 15, 30, tzinfo=timezone.utc))


@pytest.fixture
def hub():
    return NotificationHub()


@pytest.fixture
def tracker(store, hub, clock):
    return FootprintTracker(store, hub, rng=random.Random(42), clock=clock)
