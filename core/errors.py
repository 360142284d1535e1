"""
Challenge Error Taxonomy

- NotFoundError: session id unknown or expired. Core components surface this
  as an absent/False result instead of raising it across their boundary.
- ValidationError: a required field is missing or an enum value is invalid.
  Raised before the session store is touched.
- InternalError: unexpected scoring or storage failure. Logged and converted
  to a safe default by the dispatcher and verifier.
"""


class ChallengeError(Exception):
    """Base class for challenge dispatch errors."""
    pass


class NotFoundError(ChallengeError):
    """Raised when a challenge session does not exist or has expired."""
    pass


class ValidationError(ChallengeError):
    """Raised when a request is missing required fields or carries bad values."""

    def __init__(self, message: str, field: str = "") -> None:
        super().__init__(message)
        self.field = field


class InternalError(ChallengeError):
    """Raised when scoring or storage fails unexpectedly."""
    pass


class StoreUnavailableError(InternalError):
    """Raised when the session store backend cannot be reached."""
    pass


class SessionMutationError(InternalError):
    """Raised when an update tries to change creation-time session fields."""
    pass


class AuthorizationError(ChallengeError):
    """Raised when an introspection call is not authorized."""
    pass
