"""
Domain exceptions.

Services raise these; `fire_safety.main` maps them to HTTP responses.
Token errors keep their precise subclass for logging, but every one
of them is rendered to the client as the same 401 message.
"""


class FireSafetyError(Exception):
    """Base exception for the fire-safety backend."""

    status_code = 400

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class AuthenticationError(FireSafetyError):
    """Bad credentials or unusable account."""

    status_code = 401


class InvalidTokenError(AuthenticationError):
    """Base class for every token verification failure."""

    public_message = "Invalid or expired token"

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(message)


class TokenExpiredError(InvalidTokenError):
    pass


class TokenMalformedError(InvalidTokenError):
    """Bad signature, bad issuer/audience, or not a JWT at all."""


class TokenTypeError(InvalidTokenError):
    pass


class TokenRevokedError(InvalidTokenError):
    pass


class PermissionDeniedError(FireSafetyError):
    status_code = 403


class RateLimitedError(FireSafetyError):
    status_code = 429

    def __init__(self, message: str = "Too many attempts", retry_after: int = 0):
        self.retry_after = retry_after
        super().__init__(message)


class NotFoundError(FireSafetyError):
    status_code = 404


class ConflictError(FireSafetyError):
    status_code = 409


class ValidationError(FireSafetyError):
    """User-facing validation failure carrying every violated rule."""

    status_code = 422

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = list(errors or [])
        if self.errors:
            message = f"{message}: {'; '.join(self.errors)}"
        super().__init__(message)
