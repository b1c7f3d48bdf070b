"""Firestore Client - Persistence for activities, goals and insights.

This module handles all database I/O for footprint tracking.
All I/O is contained here; business logic is in the core module.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from google.cloud import firestore

from ..core.models import Activity, Goal, Insight, User


logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Firestore was unreachable or rejected an operation."""


@dataclass
class FirestoreConfig:
    """Configuration for Firestore client.

    Attributes:
        project_id: GCP project ID (None for default)
        database: Firestore database name (None for default database)
    """

    project_id: str | None = None
    database: str | None = None


class FootprintFirestoreClient:
    """Client for persisting footprint data to Firestore.

    Collections are top level so community queries can span users:
        users/{user_id}: { email, username, api_key_hash, ... }
        activities/{activity_id}: { user_id, name, category, co2_emission, date, ... }
        goals/{goal_id}: { user_id, type, target_reduction, status, ... }
        insights/{insight_id}: { user_id, type, message, valid_until, ... }
    """

    def __init__(self, config: FirestoreConfig | None = None) -> None:
        """Initialize Firestore client.

        Args:
            config: Firestore configuration
        """
        self.config = config or FirestoreConfig()
        self._client: firestore.Client | None = None

    @property
    def client(self) -> firestore.Client:
        """Lazy initialization of Firestore client."""
        if self._client is None:
            kwargs: dict[str, Any] = {}
            if self.config.project_id:
                kwargs["project"] = self.config.project_id
            if self.config.database:
                kwargs["database"] = self.config.database
            self._client = firestore.Client(**kwargs)
        return self._client

    def _collection(self, name: str) -> firestore.CollectionReference:
        return self.client.collection(name)

    def _get(self, collection: str, doc_id: str) -> dict | None:
        try:
            doc = self._collection(collection).document(doc_id).get()
        except Exception as e:
            logger.error("Failed to fetch %s/%s: %s", collection, doc_id[:8], str(e))
            raise StoreError(f"Failed to fetch from {collection}") from e
        if not doc.exists:
            return None
        return doc.to_dict()

    def _set(self, collection: str, doc_id: str, data: dict) -> None:
        try:
            self._collection(collection).document(doc_id).set(data)
        except Exception as e:
            logger.error("Failed to save %s/%s: %s", collection, doc_id[:8], str(e))
            raise StoreError(f"Failed to save to {collection}") from e

    def _delete(self, collection: str, doc_id: str) -> None:
        try:
            self._collection(collection).document(doc_id).delete()
        except Exception as e:
            logger.error("Failed to delete %s/%s: %s", collection, doc_id[:8], str(e))
            raise StoreError(f"Failed to delete from {collection}") from e

    def _stream(self, collection: str, query) -> list[dict]:
        try:
            return [doc.to_dict() for doc in query.stream()]
        except Exception as e:
            logger.error("Failed to query %s: %s", collection, str(e))
            raise StoreError(f"Failed to query {collection}") from e

    # ==================== User Operations ====================

    def list_users(self) -> dict[str, User]:
        """Fetch every registered user keyed by user_id."""
        logger.debug("Listing all users")
        try:
            return {doc.id: User(**doc.to_dict()) for doc in self._collection("users").stream()}
        except Exception as e:
            logger.error("Failed to list users: %s", str(e))
            raise StoreError("Failed to list users") from e

    # ==================== Activity Operations ====================

    def add_activity(self, activity: Activity) -> Activity:
        """Save a new activity.

        Args:
            activity: Activity with its emission already computed

        Returns:
            The saved activity
        """
        logger.info("Saving activity for %s: %s", activity.user_id[:8], activity.name)
        self._set("activities", activity.id, activity.model_dump())
        return activity

    def get_activity(self, activity_id: str) -> Activity | None:
        data = self._get("activities", activity_id)
        return Activity(**data) if data is not None else None

    def delete_activity(self, activity_id: str) -> None:
        logger.info("Deleting activity: %s", activity_id[:8])
        self._delete("activities", activity_id)

    def query_activities(
        self,
        user_id: str | None = None,
        category: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        end_inclusive: bool = True,
        limit: int | None = None,
    ) -> list[Activity]:
        """Fetch activities matching a filter, newest first.

        Args:
            user_id: Restrict to one owner (None for every user)
            category: Restrict to one category
            start: Lower date bound (inclusive)
            end: Upper date bound
            end_inclusive: Whether ``end`` itself is included
            limit: Maximum number of activities

        Returns:
            List of activities (may be empty)
        """
        logger.debug(
            "Querying activities user=%s category=%s from %s to %s",
            user_id[:8] if user_id else "*", category, start, end,
        )
        query = self._collection("activities")
        if user_id is not None:
            query = query.where("user_id", "==", user_id)
        if category is not None:
            query = query.where("category", "==", category)
        if start is not None:
            query = query.where("date", ">=", start)
        if end is not None:
            query = query.where("date", "<=" if end_inclusive else "<", end)
        query = query.order_by("date", direction=firestore.Query.DESCENDING)
        if limit is not None:
            query = query.limit(limit)

        activities = [Activity(**data) for data in self._stream("activities", query)]
        logger.debug("Found %d activities", len(activities))
        return activities

    # ==================== Goal Operations ====================

    def save_goal(self, goal: Goal) -> Goal:
        """Create or overwrite a goal."""
        logger.info("Saving %s goal for %s: %s", goal.type, goal.user_id[:8], goal.status)
        self._set("goals", goal.id, goal.model_dump())
        return goal

    def get_goal(self, goal_id: str) -> Goal | None:
        data = self._get("goals", goal_id)
        return Goal(**data) if data is not None else None

    def delete_goal(self, goal_id: str) -> None:
        logger.info("Deleting goal: %s", goal_id[:8])
        self._delete("goals", goal_id)

    def list_goals(
        self,
        user_id: str,
        status: str | None = None,
        goal_type: str | None = None,
    ) -> list[Goal]:
        """Fetch a user's goals, newest first.

        Args:
            user_id: The goals' owner
            status: Optional status filter
            goal_type: Optional weekly/monthly filter

        Returns:
            List of goals (may be empty)
        """
        query = self._collection("goals").where("user_id", "==", user_id)
        if status is not None:
            query = query.where("status", "==", status)
        if goal_type is not None:
            query = query.where("type", "==", goal_type)
        query = query.order_by("created_at", direction=firestore.Query.DESCENDING)

        return [Goal(**data) for data in self._stream("goals", query)]

    # ==================== Insight Operations ====================

    def save_insight(self, insight: Insight) -> Insight:
        """Create or overwrite an insight."""
        logger.info("Saving %s insight for %s", insight.type, insight.user_id[:8])
        self._set("insights", insight.id, insight.model_dump())
        return insight

    def get_insight(self, insight_id: str) -> Insight | None:
        data = self._get("insights", insight_id)
        return Insight(**data) if data is not None else None

    def mark_insight_read(self, insight_id: str) -> None:
        """Flip the read flag of an insight."""
        try:
            self._collection("insights").document(insight_id).update({"is_read": True})
        except Exception as e:
            logger.error("Failed to mark insight read: %s", str(e))
            raise StoreError("Failed to update insight") from e

    def list_insights(
        self,
        user_id: str,
        valid_after: datetime,
        unread_only: bool = False,
        insight_type: str | None = None,
        limit: int | None = None,
    ) -> list[Insight]:
        """Fetch a user's still-valid insights, newest first.

        Args:
            user_id: The insights' owner
            valid_after: Only insights with valid_until later than this
            unread_only: Skip insights already marked read
            insight_type: Optional tip/analysis/achievement/warning filter
            limit: Maximum number of insights

        Returns:
            List of insights (may be empty)
        """
        query = self._collection("insights").where("user_id", "==", user_id)
        if unread_only:
            query = query.where("is_read", "==", False)
        if insight_type is not None:
            query = query.where("type", "==", insight_type)

        # Firestore only allows ordering by the field used in an inequality
        # filter first, so expiry is checked in memory.
        query = query.order_by("created_at", direction=firestore.Query.DESCENDING)

        insights: list[Insight] = []
        try:
            for doc in query.stream():
                insight = Insight(**doc.to_dict())
                if not insight.is_valid(valid_after):
                    continue
                insights.append(insight)
                if limit is not None and len(insights) >= limit:
                    break
        except Exception as e:
            logger.error("Failed to query insights: %s", str(e))
            raise StoreError("Failed to query insights") from e
        return insights
