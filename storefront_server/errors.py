"""Error taxonomy shared by the API client, stores and surfaces."""

from typing import Optional


class StorefrontError(Exception):
    """Base class for every error raised by the storefront client."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ValidationError(StorefrontError):
    """Client-side check failed; nothing was sent to the backend."""


class NotFoundError(StorefrontError):
    """Backend answered 404."""


class AuthError(StorefrontError):
    """Backend answered 401/403, or the action needs a logged-in user."""


class NetworkError(StorefrontError):
    """No response from the backend (connection failure or timeout)."""


class ServerError(StorefrontError):
    """Backend answered with a 5xx or an otherwise unusable response."""
