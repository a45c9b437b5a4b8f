"""Domain failures of the authentication core.

Every error carries a generic public message. The concrete reason (unknown
email, wrong token kind, ...) is logged where the error is raised and never
returned to the client.
"""
from datetime import datetime
from typing import Any

from authcore.services.clock import as_utc


class AuthError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message

    def extra(self) -> dict[str, Any]:
        return {}

    def headers(self) -> dict[str, str] | None:
        return None


class InvalidCredentials(AuthError):
    status_code = 401
    message = "Incorrect email or password"


class AccountLocked(AuthError):
    status_code = 423
    message = "Account is temporarily locked"

    def __init__(self, unlock_at: datetime) -> None:
        super().__init__()
        self.unlock_at = as_utc(unlock_at)

    def extra(self) -> dict[str, Any]:
        return {"lockedUntil": self.unlock_at.isoformat()}


class RateLimitExceeded(AuthError):
    status_code = 429
    message = "Too many requests"

    def __init__(self, limit: int, retry_after: int = 60) -> None:
        super().__init__(f"Rate limit of {limit} requests per minute exceeded")
        self.limit = limit
        self.retry_after = retry_after

    def extra(self) -> dict[str, Any]:
        return {"limit": self.limit}

    def headers(self) -> dict[str, str] | None:
        return {"Retry-After": str(self.retry_after), "X-RateLimit-Limit": str(self.limit)}


class TokenInvalid(AuthError):
    status_code = 401
    message = "Invalid or expired token"

    def headers(self) -> dict[str, str] | None:
        return {"WWW-Authenticate": "Bearer"}


class AccountTokenInvalid(TokenInvalid):
    """Verification or password-reset link that is unknown, used or expired."""

    status_code = 400
    message = "Invalid or expired token"

    def headers(self) -> dict[str, str] | None:
        return None


class PasswordUnchanged(AuthError):
    status_code = 400
    message = "New password must differ from the current one"


class CodeInvalidOrExpired(AuthError):
    status_code = 400
    message = "Invalid or expired authorization code"


class DuplicateAccount(AuthError):
    status_code = 400
    message = "Email already registered"


class NotFound(AuthError):
    status_code = 404
    message = "Not found"


class Unexpected(AuthError):
    status_code = 500
    message = "Internal server error"


class InsecureSigningSecret(RuntimeError):
    """Raised at startup when the token signing secret is unusable."""
