"""Insight Generation - Pure functions for emission analysis and tips.

Randomness (template choice and suggested amounts) comes from the
``random.Random`` passed in, so a seeded generator gives repeatable output.
"""

import math
import random
from datetime import datetime, timedelta
from typing import Iterable

from .models import ACTIVITY_CATEGORIES, Activity, EmissionAnalysis, Goal, Insight


TIP_TEMPLATES: dict[str, dict[str, tuple[str, ...]]] = {
    "transport": {
        "high": (
            "Try cycling or walking for short trips this week to reduce {amount} kg CO2",
            "Consider carpooling or public transport to cut your transport emissions by {amount} kg CO2",
            "Work from home 2 days this week to save approximately {amount} kg CO2",
            "Combine multiple errands into one trip to reduce {amount} kg CO2",
        ),
        "medium": (
            "Switch to public transport once this week to save {amount} kg CO2",
            "Try walking for trips under 1km to reduce emissions by {amount} kg CO2",
            "Plan your routes efficiently to cut fuel consumption and save {amount} kg CO2",
        ),
        "low": (
            "Great job keeping transport emissions low! Maintain this by walking short distances",
            "Your transport footprint is excellent - keep using sustainable options!",
        ),
    },
    "food": {
        "high": (
            "Try 2 plant-based meals this week to reduce {amount} kg CO2",
            "Replace beef with chicken once this week to save {amount} kg CO2",
            "Buy local produce to cut food transport emissions by {amount} kg CO2",
            "Reduce food waste by meal planning to save {amount} kg CO2",
        ),
        "medium": (
            "Try one meatless meal this week to save {amount} kg CO2",
            "Choose seasonal vegetables to reduce {amount} kg CO2",
            "Buy from local farmers markets to cut {amount} kg CO2",
        ),
        "low": (
            "Excellent food choices! Your plant-based meals are making a difference",
            "Keep up the sustainable eating habits - you're doing great!",
        ),
    },
    "energy": {
        "high": (
            "Lower your thermostat by 2°C to save {amount} kg CO2 this week",
            "Unplug devices when not in use to reduce {amount} kg CO2",
            "Switch to LED bulbs to cut energy consumption by {amount} kg CO2",
            "Use cold water for washing to save {amount} kg CO2",
        ),
        "medium": (
            "Turn off lights when leaving rooms to save {amount} kg CO2",
            "Use a programmable thermostat to reduce {amount} kg CO2",
            "Air dry clothes instead of using the dryer to cut {amount} kg CO2",
        ),
        "low": (
            "Your energy usage is very efficient - keep it up!",
            "Great energy conservation habits - you're leading by example!",
        ),
    },
    "other": {
        "high": (
            "Reduce single-use plastics to cut {amount} kg CO2 this week",
            "Recycle more items to save {amount} kg CO2",
            "Buy second-hand items to reduce {amount} kg CO2",
            "Use reusable bags and containers to cut {amount} kg CO2",
        ),
        "medium": (
            "Start composting to reduce waste emissions by {amount} kg CO2",
            "Choose products with less packaging to save {amount} kg CO2",
            "Repair items instead of replacing to cut {amount} kg CO2",
        ),
        "low": (
            "Your waste reduction efforts are paying off - keep it up!",
            "Excellent sustainable lifestyle choices!",
        ),
    },
}

HIGH_INTENSITY_THRESHOLD = 20
MEDIUM_INTENSITY_THRESHOLD = 10


def round_half_up(value: float) -> int:
    """Nearest whole number, halves rounded up (2.5 -> 3)."""
    return math.floor(value + 0.5)


def emissions_by_category(activities: Iterable[Activity]) -> dict[str, float]:
    """Fold activities into the fixed four-category mapping (missing = 0)."""
    totals = {category: 0.0 for category in ACTIVITY_CATEGORIES}
    for activity in activities:
        totals[activity.category] = totals.get(activity.category, 0.0) + activity.co2_emission
    return totals


def analyze_emissions(
    weekly_activities: list[Activity],
    monthly_activities: list[Activity],
) -> EmissionAnalysis:
    """Summarise trailing 7-day and 30-day emissions.

    The highest category is taken from the 7-day totals. Ties go to the
    category listed first in ACTIVITY_CATEGORIES.

    Args:
        weekly_activities: Activities from the last 7 days
        monthly_activities: Activities from the last 30 days

    Returns:
        EmissionAnalysis for tip and goal generation
    """
    weekly = emissions_by_category(weekly_activities)
    monthly = emissions_by_category(monthly_activities)

    highest_category = ACTIVITY_CATEGORIES[0]
    for category in ACTIVITY_CATEGORIES[1:]:
        if weekly[category] > weekly[highest_category]:
            highest_category = category

    return EmissionAnalysis(
        weekly_total=sum(weekly.values()),
        monthly_total=sum(monthly.values()),
        weekly_emissions=weekly,
        monthly_emissions=monthly,
        highest_category=highest_category,
        highest_category_amount=weekly[highest_category],
        activities_count=len(weekly_activities),
    )


def classify_intensity(amount: float) -> str:
    """Map a weekly category total to low / medium / high."""
    if amount > HIGH_INTENSITY_THRESHOLD:
        return "high"
    if amount > MEDIUM_INTENSITY_THRESHOLD:
        return "medium"
    return "low"


def suggest_reduction(amount: float, rng: random.Random) -> int:
    """A random 10%-30% share of ``amount``, rounded to whole kg."""
    return round_half_up(amount * (0.10 + rng.random() * 0.20))


def build_tip(
    user_id: str,
    analysis: EmissionAnalysis,
    rng: random.Random,
    now: datetime,
) -> Insight:
    """Pick a templated tip for the user's highest-emission category.

    Args:
        user_id: Owner of the insight
        analysis: Result of analyze_emissions
        rng: Source of randomness for wording and amount
        now: Creation time; the tip stays valid for 7 days

    Returns:
        Unsaved tip Insight
    """
    category = analysis.highest_category
    amount = analysis.highest_category_amount
    intensity = classify_intensity(amount)

    template = rng.choice(TIP_TEMPLATES[category][intensity])
    potential_reduction = suggest_reduction(amount, rng)

    return Insight(
        user_id=user_id,
        type="tip",
        category=category,
        title=f"{category.capitalize()} Reduction Tip",
        message=template.replace("{amount}", f"{potential_reduction:.1f}"),
        data={
            "current_emissions": amount,
            "potential_reduction": potential_reduction,
            "category": category,
            "intensity": intensity,
        },
        priority="high" if intensity == "high" else "medium",
        created_at=now,
    )


def build_weekly_goal(
    user_id: str,
    analysis: EmissionAnalysis,
    rng: random.Random,
    now: datetime,
) -> tuple[Goal, Insight]:
    """Propose a weekly goal cutting 5%-15% of last week's emissions.

    The target is at least 1 kg so the goal stays valid for very small totals.

    Returns:
        (goal, announcement insight), both unsaved
    """
    percentage = 0.05 + rng.random() * 0.10
    target = max(1, round_half_up(analysis.weekly_total * percentage))
    category = analysis.highest_category

    goal = Goal(
        user_id=user_id,
        type="weekly",
        target_reduction=target,
        category=category,
        start_date=now,
        end_date=now + timedelta(days=7),
        created_at=now,
    )

    announcement = Insight(
        user_id=user_id,
        type="analysis",
        category="overall",
        title="New Weekly Goal Set!",
        message=f"Try to reduce your {category} emissions by {target:.1f} kg CO2 this week",
        data={
            "goal_id": goal.id,
            "target_reduction": target,
            "category": category,
        },
        priority="high",
        created_at=now,
    )

    return goal, announcement
