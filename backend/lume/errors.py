# lume/errors.py
from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    """
    Base for every failure the access core reports to its caller.

    code is stable and safe to hand to a client; message is user-facing.
    """
    code = "AUTH_ERROR"
    default_message = "Authentication failed."

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class InvalidCredentials(AuthError):
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid email or password."


class DuplicateEmail(AuthError):
    code = "DUPLICATE_EMAIL"
    default_message = "An account with this email already exists."


class ProfileValidationError(AuthError):
    code = "VALIDATION_ERROR"
    default_message = "Registration data is invalid."

    def __init__(self, message: Optional[str] = None, fields: Optional[dict[str, str]] = None) -> None:
        super().__init__(message)
        self.fields = dict(fields or {})

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["fields"] = self.fields
        return detail


class StoreUnavailable(AuthError):
    code = "STORE_UNAVAILABLE"
    default_message = "The account service is unavailable. Please try again."


class StaleSession(AuthError):
    # Raised internally on restore; the manager resolves it by logging out locally.
    code = "STALE_SESSION"
    default_message = "The saved session is no longer valid."


class SessionSuperseded(AuthError):
    code = "SESSION_SUPERSEDED"
    default_message = "Another sign-in or sign-out replaced this request."
