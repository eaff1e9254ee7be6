"""
auth/errors.py -- Authentication failure taxonomy.

Every exception carries a stable error code, an HTTP status, and a generic
message. The message is what the client sees, so it never names the precise
cause: an unknown username, a wrong password and an expired handshake all read
"Invalid credentials." to the caller.

Infrastructure failures (database, Redis, network) are NOT part of this
taxonomy. They propagate as-is and end up in the generic 500 handler.

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for authentication failures mapped to HTTP responses."""

    status_code: int = 401
    code: str = "unauthorized"
    message: str = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class CaptchaFailed(AuthError):
    status_code = 400
    code = "captcha_failed"
    message = "CAPTCHA verification failed."


class UsernameTaken(AuthError):
    status_code = 409
    code = "username_taken"
    message = "Username already exists."


class InvalidCredentials(AuthError):
    """Unknown username, wrong proof, or a handshake that cannot be completed."""

    status_code = 401
    code = "invalid_credentials"
    message = "Invalid credentials."


class SessionExpiredOrInvalid(AuthError):
    """Login step 2 referenced a handshake that is gone (used, expired, or never existed)."""

    status_code = 401
    code = "session_expired"
    message = "Session expired or invalid."


class InvalidRefreshToken(AuthError):
    """Expired, malformed, blacklisted or superseded refresh token."""

    status_code = 401
    code = "invalid_refresh_token"
    message = "Invalid refresh token."


__all__ = [
    "AuthError",
    "CaptchaFailed",
    "UsernameTaken",
    "InvalidCredentials",
    "SessionExpiredOrInvalid",
    "InvalidRefreshToken",
]
