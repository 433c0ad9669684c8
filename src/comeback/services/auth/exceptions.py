"""Custom exceptions for authentication and authorization."""

from fastapi import status


class AuthenticationError(Exception):
    """Raised when authentication fails (invalid credentials, expired tokens, etc.)."""

    pass


class LoginRequired(AuthenticationError):
    """Raised by route guards when the visitor must be sent to the login page."""

    def __init__(self, location: str):
        super().__init__(f"Login required, redirecting to {location}")
        self.location = location


class AuthorizationError(Exception):
    """Raised when an authenticated user lacks permission to access a resource."""

    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Access denied. Administrator permissions required."):
        super().__init__(message)
        self.message = message


class ProfileSyncError(Exception):
    """Raised when the application user record could not be created or updated."""

    pass
