"""MCP Server - Tool definitions for Claude integration.

Defines all MCP tools that Claude can invoke for carbon footprint tracking.
Handles authentication via API key in Authorization header.
"""

import functools
import logging
import os
from contextvars import ContextVar
from datetime import datetime, timezone

from mcp.server.fastmcp import FastMCP
from mcp.server.transport_security import TransportSecuritySettings
from pydantic import ValidationError

from ..core.emissions import list_emission_factors, CATEGORY_DEFAULT_FACTORS
from ..core.errors import FootprintError, InvalidInputError
from ..core.goals import progress_percentage
from .auth import AuthClient
from .firestore_client import FootprintFirestoreClient, FirestoreConfig, StoreError
from .notifications import NotificationHub
from .tracker import FootprintTracker


logger = logging.getLogger(__name__)

# Context variable to store current user_id per request
current_user_id: ContextVar[str | None] = ContextVar("current_user_id", default=None)

transport_security = TransportSecuritySettings(
    enable_dns_rebinding_protection=True,
    allowed_hosts=[
        "localhost:*",
        "127.0.0.1:*",
        "*.run.app:*",
        "*.run.app",
    ],
)

# Initialize FastMCP server with stateless HTTP for cloud deployments
mcp = FastMCP(
    "footprint",
    instructions="""Footprint - Personal carbon footprint assistant.

Use these tools to log everyday activities (transport, food, energy, other),
see the CO2 they produce, set reduction goals and get tips.

Use get_emission_factors to pick a known activity name before logging.
After logging, show the updated dashboard numbers.
Goal progress compares the goal period with the equally long period before it.""",
    stateless_http=True,
    transport_security=transport_security,
)

# Lazy-initialized clients
_firestore_client: FootprintFirestoreClient | None = None
_auth_client: AuthClient | None = None
_notification_hub: NotificationHub | None = None
_tracker: FootprintTracker | None = None


def get_firestore_client() -> FootprintFirestoreClient:
    """Get or create Firestore client."""
    global _firestore_client
    if _firestore_client is None:
        config = FirestoreConfig(
            project_id=os.environ.get("FIRESTORE_PROJECT"),
            database=os.environ.get("FIRESTORE_DATABASE", "footprint"),
        )
        _firestore_client = FootprintFirestoreClient(config)
    return _firestore_client


def get_auth_client() -> AuthClient:
    """Get or create Auth client."""
    global _auth_client
    if _auth_client is None:
        _auth_client = AuthClient(get_firestore_client().client)
    return _auth_client


def get_notification_hub() -> NotificationHub:
    """Get or create the process-wide notification hub."""
    global _notification_hub
    if _notification_hub is None:
        _notification_hub = NotificationHub()
    return _notification_hub


def get_tracker() -> FootprintTracker:
    """Get or create the tracker service."""
    global _tracker
    if _tracker is None:
        _tracker = FootprintTracker(get_firestore_client(), get_notification_hub())
    return _tracker


def get_user_id() -> str:
    """Get current authenticated user ID.

    Raises:
        RuntimeError: If no user is authenticated
    """
    user_id = current_user_id.get()
    if user_id is None:
        raise RuntimeError("No authenticated user. Ensure API key is provided.")
    return user_id


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO date or datetime; naive values are taken as UTC.

    A trailing ``Z`` is read as UTC.

    Raises:
        InvalidInputError: If the value is not ISO formatted
    """
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise InvalidInputError("Invalid date format. Use YYYY-MM-DD.") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def tool_errors(func):
    """Turn expected failures into ``{"error": ...}`` tool results."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except FootprintError as e:
            return {"error": str(e)}
        except ValidationError as e:
            return {"error": f"Invalid input: {e.errors()[0]['msg']}"}
        except StoreError:
            logger.error("Tool %s failed on storage", func.__name__)
            return {"error": "Server error. Please try again."}

    return wrapper


# ==================== Activity Tools ====================


@mcp.tool()
def get_emission_factors() -> dict:
    """List known activity names with their emission factors.

    Returns:
        Known factors (kg CO2 per unit) and per-category fallbacks
        used for unknown activity names
    """
    return {
        "factors": list_emission_factors(),
        "category_defaults": dict(CATEGORY_DEFAULT_FACTORS),
    }


@mcp.tool()
@tool_errors
def log_activity(
    name: str,
    category: str,
    amount: float,
    unit: str,
    date_str: str | None = None,
) -> dict:
    """Log an activity and compute its CO2 emission.

    Args:
        name: Activity name (e.g., "Car Travel", "Beef Consumption")
        category: One of transport, food, energy, other
        amount: Quantity in the given unit, greater than 0
        unit: Unit of the amount (e.g., "km", "kg", "kWh")
        date_str: Optional ISO date/datetime when it happened (default now)

    Returns:
        The created activity and the user's updated stats
    """
    user_id = get_user_id()
    tracker = get_tracker()

    occurred_at = parse_timestamp(date_str) if date_str else None
    activity = tracker.log_activity(user_id, name, category, amount, unit, occurred_at)

    return {
        "activity": activity.model_dump(mode="json"),
        "user_stats": tracker.get_user_stats(user_id).model_dump(),
    }


@mcp.tool()
@tool_errors
def list_activities(
    category: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    limit: int = 50,
) -> dict:
    """List logged activities, newest first.

    Args:
        category: Optional category filter ("all" for every category)
        start_date: Optional lower bound, YYYY-MM-DD
        end_date: Optional upper bound, YYYY-MM-DD
        limit: Maximum number of activities (default 50)

    Returns:
        Dictionary with the matching activities
    """
    user_id = get_user_id()

    activities = get_tracker().list_activities(
        user_id,
        category=category,
        start=parse_timestamp(start_date) if start_date else None,
        end=parse_timestamp(end_date) if end_date else None,
        limit=limit,
    )
    return {"activities": [a.model_dump(mode="json") for a in activities]}


@mcp.tool()
@tool_errors
def delete_activity(activity_id: str) -> dict:
    """Delete one of the user's activities.

    Args:
        activity_id: The ID of the activity to delete
    """
    get_tracker().delete_activity(get_user_id(), activity_id)
    return {"success": True, "message": "Activity deleted successfully"}


# ==================== Dashboard Tools ====================


@mcp.tool()
@tool_errors
def get_dashboard() -> dict:
    """Get the user's emission stats next to the community average.

    Returns:
        user_stats (total, this week since Sunday, this month, category
        breakdown, weekly streak) and community_stats
    """
    user_id = get_user_id()
    tracker = get_tracker()

    return {
        "user_stats": tracker.get_user_stats(user_id).model_dump(),
        "community_stats": tracker.get_community_stats().model_dump(),
    }


@mcp.tool()
@tool_errors
def get_leaderboard(period: str = "month", limit: int = 10) -> dict:
    """Rank users by total emissions; the lowest emitter is first.

    Args:
        period: week, month, year or all
        limit: Maximum number of rows (default 10)
    """
    entries = get_tracker().get_leaderboard(period, limit)
    return {"period": period, "leaderboard": [e.model_dump() for e in entries]}


@mcp.tool()
@tool_errors
def get_weekly_summary(weeks: int = 8) -> dict:
    """Per-week emission totals with category breakdown, newest first.

    Args:
        weeks: Number of weeks to return (default 8)
    """
    buckets = get_tracker().get_weekly_summary(get_user_id(), weeks)
    return {"weeks": [b.model_dump() for b in buckets]}


# ==================== Goal Tools ====================


@mcp.tool()
@tool_errors
def create_goal(goal_type: str, target_reduction: float, category: str = "overall") -> dict:
    """Create a reduction goal starting now.

    Only one active goal per type is allowed.

    Args:
        goal_type: weekly (7 days) or monthly (one calendar month)
        target_reduction: kg CO2 to cut compared with the previous period
        category: transport, food, energy, other or overall
    """
    goal = get_tracker().create_goal(get_user_id(), goal_type, target_reduction, category)
    return {"goal": goal.model_dump(mode="json")}


@mcp.tool()
@tool_errors
def list_goals(status: str = "active", goal_type: str = "weekly") -> dict:
    """List goals; active goals have their progress refreshed first.

    Args:
        status: active, completed, failed or all
        goal_type: weekly, monthly or all
    """
    goals = get_tracker().list_goals(get_user_id(), status, goal_type)
    return {
        "goals": [
            {**g.model_dump(mode="json"), "progress_percentage": progress_percentage(g)}
            for g in goals
        ]
    }


@mcp.tool()
@tool_errors
def update_goal(goal_id: str, target_reduction: float | None = None, status: str | None = None) -> dict:
    """Update a goal's target and/or status. Only provided fields change.

    Args:
        goal_id: The ID of the goal
        target_reduction: New target in kg CO2 (optional)
        status: active, completed or failed (optional)
    """
    if target_reduction is None and status is None:
        return {"error": "No updates provided."}

    goal = get_tracker().update_goal(get_user_id(), goal_id, target_reduction, status)
    return {"goal": goal.model_dump(mode="json")}


@mcp.tool()
@tool_errors
def delete_goal(goal_id: str) -> dict:
    """Delete one of the user's goals.

    Args:
        goal_id: The ID of the goal
    """
    get_tracker().delete_goal(get_user_id(), goal_id)
    return {"success": True, "message": "Goal deleted successfully"}


@mcp.tool()
@tool_errors
def get_goal_progress(goal_id: str) -> dict:
    """Detailed progress for a goal with per-day emissions.

    Args:
        goal_id: The ID of the goal
    """
    progress = get_tracker().get_goal_progress(get_user_id(), goal_id)
    return progress.model_dump(mode="json")


# ==================== Insight Tools ====================


@mcp.tool()
@tool_errors
def analyze_emissions() -> dict:
    """Refresh goal progress, analyse the last 7/30 days and create a tip.

    Returns:
        The analysis and the newly generated tip
    """
    analysis, tip = get_tracker().run_analysis(get_user_id())
    return {
        "analysis": analysis.model_dump(),
        "tip": tip.model_dump(mode="json"),
        "message": "Analysis completed successfully",
    }


@mcp.tool()
@tool_errors
def get_insights(limit: int = 10, unread_only: bool = False) -> dict:
    """List the user's still-valid insights, newest first.

    Args:
        limit: Maximum number of insights (default 10)
        unread_only: Only return insights not yet marked read
    """
    insights = get_tracker().list_insights(get_user_id(), limit, unread_only)
    return {"insights": [i.model_dump(mode="json") for i in insights]}


@mcp.tool()
@tool_errors
def mark_insight_read(insight_id: str) -> dict:
    """Mark an insight as read.

    Args:
        insight_id: The ID of the insight
    """
    get_tracker().mark_insight_read(get_user_id(), insight_id)
    return {"success": True, "message": "Insight marked as read"}


@mcp.tool()
@tool_errors
def get_live_tip() -> dict:
    """Get the latest valid tip, generating a fresh one if none exists."""
    tip = get_tracker().get_live_tip(get_user_id())
    return {"tip": tip.model_dump(mode="json")}
