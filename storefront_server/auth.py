"""Authentication state and session persistence."""

import json
import logging
import os
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError as PydanticValidationError

from .models import AuthResult, User

logger = logging.getLogger(__name__)

USER_KEY = "user"
TOKEN_KEY = "authToken"
LOGGED_IN_KEY = "isLoggedIn"
SESSION_KEYS = (USER_KEY, TOKEN_KEY, LOGGED_IN_KEY)


class SessionStore:
    """Durable string key-value store backed by a JSON file."""

    def __init__(self, session_file: Optional[str] = None) -> None:
        """
        Initialize the session store.

        Args:
            session_file: Path to session file (default: ~/.storefront_session.json)
        """
        if session_file is None:
            session_file = str(Path.home() / ".storefront_session.json")
        self.session_file = session_file
        self._values: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        """Load saved values from file."""
        if not os.path.exists(self.session_file):
            return {}
        try:
            with open(self.session_file) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            # A corrupted session file means starting logged out
            logger.warning(f"Could not load session: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed session file {self.session_file}")
            return {}
        logger.info(f"Loaded existing session from {self.session_file}")
        return {str(k): str(v) for k, v in data.items()}

    def _save(self) -> None:
        """Write values to file with restrictive permissions."""
        if not self._values:
            if os.path.exists(self.session_file):
                os.remove(self.session_file)
                logger.info("Session cleared")
            return
        with open(self.session_file, "w") as f:
            json.dump(self._values, f, indent=2)
        os.chmod(self.session_file, 0o600)

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value
        self._save()

    def remove(self, key: str) -> None:
        if self._values.pop(key, None) is not None:
            self._save()

    def multi_remove(self, keys: Iterable[str]) -> None:
        removed = [k for k in keys if self._values.pop(k, None) is not None]
        if removed:
            self._save()


class AuthManager:
    """Manages the logged-in user and token on top of a SessionStore."""

    def __init__(self, store: SessionStore) -> None:
        self.store = store
        self.user: Optional[User] = None
        self.token: Optional[str] = None
        self._load_user()

    def _load_user(self) -> None:
        """Restore the user from the persisted session, if any."""
        raw_user = self.store.get(USER_KEY)
        token = self.store.get(TOKEN_KEY)
        if not raw_user or token is None:
            logger.info("No user data found in session")
            return
        try:
            self.user = User.model_validate_json(raw_user)
            self.token = token
            logger.info(f"Restored session for customer {self.user.id}")
        except PydanticValidationError as e:
            logger.warning(f"Discarding unreadable user record: {e}")
            self.store.multi_remove(SESSION_KEYS)

    def is_authenticated(self) -> bool:
        """Check if there's an active logged-in session."""
        return self.user is not None

    @property
    def customer_id(self) -> Optional[str]:
        return self.user.id if self.user else None

    def login(self, result: AuthResult, phone: Optional[str] = None) -> User:
        """
        Persist a successful OTP verification.

        Args:
            result: Verified auth result from the backend
            phone: Phone number used to log in, preferred over the backend's copy

        Returns:
            The stored user
        """
        if not result.success or result.user is None:
            raise ValueError("Cannot log in with an unsuccessful auth result")

        user = result.user.model_copy(
            update={
                "phone": phone or result.user.phone,
                "has_addresses": result.has_addresses,
            }
        )
        self.user = user
        self.token = result.token or ""
        self.store.set(USER_KEY, user.model_dump_json(by_alias=True))
        self.store.set(TOKEN_KEY, self.token)
        self.store.set(LOGGED_IN_KEY, "true")
        logger.info(f"User {user.id} logged in")
        return user

    def update_user(self, **changes) -> User:
        """Merge profile changes into the stored user."""
        if self.user is None:
            raise ValueError("User not logged in")
        self.user = self.user.model_copy(update=changes)
        self.store.set(USER_KEY, self.user.model_dump_json(by_alias=True))
        return self.user

    def clear_session(self) -> None:
        """Forget the user and wipe the persisted session."""
        self.user = None
        self.token = None
        self.store.multi_remove(SESSION_KEYS)
