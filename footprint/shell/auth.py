"""Authentication - API key generation and validation.

Handles API key creation, hashing, and validation. Never stores plaintext keys.
The hashed key doubles as the user_id that owns activities, goals and insights.
"""

import hashlib
import logging
import secrets

from google.cloud import firestore

from ..core.errors import InvalidInputError
from ..core.models import User, utcnow


logger = logging.getLogger(__name__)

# API key prefix for identification
API_KEY_PREFIX = "fpt_"


def generate_api_key() -> str:
    """Generate a cryptographically secure API key.

    Returns:
        API key in format: fpt_<random_chars>
    """
    return f"{API_KEY_PREFIX}{secrets.token_urlsafe(32)}"


def hash_api_key(api_key: str) -> str:
    """Hash an API key to create a user_id.

    Uses SHA256 and truncates to 32 chars for Firestore document ID.

    Args:
        api_key: The plaintext API key

    Returns:
        32-character hash to use as user_id
    """
    return hashlib.sha256(api_key.encode()).hexdigest()[:32]


def validate_api_key_format(api_key: str | None) -> bool:
    """Check if API key has valid format."""
    if not api_key or not api_key.startswith(API_KEY_PREFIX):
        return False
    return len(api_key) >= 40  # prefix + at least some random chars


def api_key_from_header(header: str | None) -> str | None:
    """Extract the key from an ``Authorization: Bearer <key>`` header."""
    if not header or not header.startswith("Bearer "):
        return None
    return header[len("Bearer "):].strip() or None


class AuthClient:
    """Client for API key authentication operations.

    Handles user registration and API key validation against Firestore.
    """

    def __init__(self, db: firestore.Client) -> None:
        """Initialize auth client.

        Args:
            db: Firestore client instance
        """
        self._db = db

    def _users(self) -> firestore.CollectionReference:
        return self._db.collection("users")

    def username_taken(self, username: str) -> bool:
        """Check whether a display name is already registered."""
        matches = self._users().where("username", "==", username).limit(1).stream()
        return any(True for _ in matches)

    def register_user(self, email: str, username: str) -> tuple[str, str]:
        """Register a new user and generate their API key.

        Args:
            email: User's email address
            username: Display name shown on the leaderboard

        Returns:
            Tuple of (api_key, user_id) - api_key is only returned once!

        Raises:
            InvalidInputError: If the username is already in use
        """
        logger.info("Registering new user: %s", username)

        if self.username_taken(username):
            raise InvalidInputError("Username is already taken")

        api_key = generate_api_key()
        user_id = hash_api_key(api_key)

        user = User(
            email=email,
            username=username,
            api_key_hash=user_id,
            created_at=utcnow(),
        )
        self._users().document(user_id).set(user.model_dump())

        logger.info("User registered successfully: %s", user_id[:8])
        return api_key, user_id

    def validate_api_key(self, api_key: str | None) -> str | None:
        """Validate an API key and return the user_id if valid.

        Args:
            api_key: The API key to validate

        Returns:
            user_id if valid, None if invalid
        """
        if not validate_api_key_format(api_key):
            logger.warning("Invalid API key format")
            return None

        user_id = hash_api_key(api_key)
        if self.user_exists(user_id):
            logger.debug("API key validated for user: %s", user_id[:8])
            return user_id

        logger.warning("API key not found in database")
        return None

    def user_exists(self, user_id: str) -> bool:
        """Check if a user exists.

        Lookup failures are logged and reported as a missing user.
        """
        try:
            return self._users().document(user_id).get().exists
        except Exception as e:
            logger.error("Error checking user %s: %s", user_id[:8], str(e))
            return False
