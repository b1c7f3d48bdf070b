"""Core Data Models - Pydantic models for type safety.

All models are value objects with no behavior beyond validation and a few
read-only helpers. Timestamps are timezone-aware UTC.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Optional
from pydantic import BaseModel, Field, model_validator
import uuid


ActivityCategory = Literal["transport", "food", "energy", "other"]
GoalCategory = Literal["transport", "food", "energy", "other", "overall"]
GoalType = Literal["weekly", "monthly"]
GoalStatus = Literal["active", "completed", "failed"]
InsightType = Literal["tip", "analysis", "achievement", "warning"]
Priority = Literal["low", "medium", "high"]
Period = Literal["week", "month", "year", "all"]

ACTIVITY_CATEGORIES: tuple[str, ...] = ("transport", "food", "energy", "other")
GOAL_CATEGORIES: tuple[str, ...] = ACTIVITY_CATEGORIES + ("overall",)

INSIGHT_TTL = timedelta(days=7)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Activity(BaseModel):
    """A single logged action with its computed CO2 emission."""

    id: str = Field(default_factory=_new_id)
    user_id: str = Field(min_length=1)
    name: str = Field(min_length=1, description="Free-text activity name, e.g. 'Car Travel'")
    category: ActivityCategory
    amount: float = Field(gt=0, description="Quantity in the declared unit")
    unit: str = Field(min_length=1, description="Declared unit, e.g. 'km' or 'kg'")
    co2_emission: float = Field(ge=0, description="kg CO2, derived from the emission factor")
    date: datetime = Field(default_factory=utcnow, description="When the activity happened")
    created_at: datetime = Field(default_factory=utcnow)


class Goal(BaseModel):
    """A reduction target over a weekly or monthly window."""

    id: str = Field(default_factory=_new_id)
    user_id: str = Field(min_length=1)
    type: GoalType = "weekly"
    target_reduction: float = Field(gt=0, description="Target reduction in kg CO2")
    current_progress: float = Field(default=0, description="Cached reduction achieved so far")
    category: GoalCategory = "overall"
    start_date: datetime
    end_date: datetime
    status: GoalStatus = "active"
    created_at: datetime = Field(default_factory=utcnow)


class Insight(BaseModel):
    """A generated, time-limited message shown to a user."""

    id: str = Field(default_factory=_new_id)
    user_id: str = Field(min_length=1)
    type: InsightType
    category: GoalCategory
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)
    priority: Priority = "medium"
    is_read: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    valid_until: Optional[datetime] = Field(default=None, description="Defaults to created_at + 7 days")

    @model_validator(mode="after")
    def _default_expiry(self) -> "Insight":
        if self.valid_until is None:
            self.valid_until = self.created_at + INSIGHT_TTL
        return self

    def is_valid(self, now: datetime) -> bool:
        return self.valid_until > now


class User(BaseModel):
    """User record stored in Firestore."""

    email: str
    username: str = Field(min_length=1, description="Display name shown on the leaderboard")
    api_key_hash: str = Field(description="SHA256 hash of API key - never store plaintext")
    created_at: datetime = Field(default_factory=utcnow)


# ==================== Derived Values ====================


class WeekBucket(BaseModel):
    """Emissions for one ISO week."""

    year: int
    week: int = Field(ge=1, le=53)
    total_emissions: float = Field(ge=0)
    activity_count: int = Field(ge=0)
    category_breakdown: dict[str, float] = Field(default_factory=dict)


class UserStats(BaseModel):
    """Dashboard numbers for a single user."""

    total_emissions: float = 0
    weekly_emissions: float = 0
    monthly_emissions: float = 0
    category_breakdown: dict[str, float] = Field(default_factory=dict)
    weekly_streak: int = 0


class CommunityStats(BaseModel):
    """Average total emissions across every user with activities."""

    average_emissions: float = 0
    total_users: int = 0


class LeaderboardEntry(BaseModel):
    """One ranked row; rank 1 is the lowest emitter."""

    rank: int = Field(ge=1)
    user_id: str
    username: str
    total_emissions: float
    activity_count: int
    avg_emission_per_activity: float


class EmissionAnalysis(BaseModel):
    """Trailing-window category totals used to pick tips and goals."""

    weekly_total: float = 0
    monthly_total: float = 0
    weekly_emissions: dict[str, float]
    monthly_emissions: dict[str, float]
    highest_category: ActivityCategory = "transport"
    highest_category_amount: float = 0
    activities_count: int = 0


class GoalEvaluation(BaseModel):
    """Result of comparing a goal's current window against its baseline."""

    current_emissions: float
    baseline_emissions: float
    actual_reduction: float = Field(ge=0)
    completed: bool


class GoalProgress(BaseModel):
    """Goal details with the activities that count toward it."""

    goal: Goal
    activities: list[Activity]
    daily_progress: dict[str, float]
    progress_percentage: float
    baseline_start: Optional[datetime] = None
