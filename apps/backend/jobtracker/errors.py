"""Error taxonomy for the job tracker.

Backend bindings raise only BackendError and AuthError. The stores translate
those into FetchError / WriteError, and the API layer maps every
JobTrackerError to an HTTP response using its ``status_code``.
"""

from pydantic import ValidationError as PydanticValidationError


class JobTrackerError(Exception):
    """Base class for all job tracker errors."""

    status_code: int = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ConfigurationError(JobTrackerError):
    """Required configuration is missing or inconsistent."""


class AuthRequiredError(JobTrackerError):
    """A mutation was attempted before a user identity was established."""

    status_code = 401

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class AuthError(JobTrackerError):
    """The auth service rejected credentials or a sign-up request."""

    status_code = 401


class BackendError(JobTrackerError):
    """Transport or HTTP failure talking to the remote backend."""

    status_code = 502

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.remote_status = status_code


class FetchError(JobTrackerError):
    """A read against the remote store failed."""

    status_code = 502


class WriteError(JobTrackerError):
    """A create, update or delete against the remote store failed."""

    status_code = 502


class JobNotFoundError(WriteError):
    """The targeted job does not exist for the current user."""

    status_code = 404


class InvalidTransitionError(JobTrackerError):
    """A reconciliation state machine was driven out of order."""


class ValidationError(JobTrackerError):
    """Client-side validation failed before any remote call was made."""

    status_code = 422

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors) or "Invalid input")
        self.errors = errors

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError) -> "ValidationError":
        """Flatten a pydantic ValidationError into readable messages."""
        messages = []
        for error in exc.errors():
            field = ".".join(str(part) for part in error.get("loc", ()))
            message = error.get("msg", "invalid value")
            messages.append(f"{field}: {message}" if field else message)
        return cls(messages)


# Common auth service messages mapped to something a user can act on
_FRIENDLY_AUTH_MESSAGES = (
    ("invalid login credentials", "Invalid email or password. Please check your credentials and try again."),
    ("email not confirmed", "Please verify your email address before signing in."),
    ("already registered", "An account with this email already exists. Please sign in instead."),
    ("rate limit", "Too many attempts. Please wait a few minutes before trying again."),
    ("too many requests", "Too many attempts. Please wait a few minutes before trying again."),
    ("signup is disabled", "New user registration is currently disabled."),
)


def friendly_auth_message(message: str) -> str:
    """Map a raw auth service message to a user-facing one."""
    lowered = message.lower()
    for needle, friendly in _FRIENDLY_AUTH_MESSAGES:
        if needle in lowered:
            return friendly
    return message
