# lume/schemas.py
from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

PASSWORD_MIN_LENGTH = 6

_NON_DIGITS = re.compile(r"\D")


# -----------------------------
# AUTH
# -----------------------------
class LoginIn(BaseModel):
    email: EmailStr
    password: str


class RegistrationProfile(BaseModel):
    """
    Sign-up form for a professional.

    Everything is required. phone keeps digits only; email is lower-cased.
    confirm_password is optional but must match when sent.
    """
    name: str
    email: EmailStr
    password: str = Field(min_length=PASSWORD_MIN_LENGTH)
    confirm_password: Optional[str] = None
    phone: str
    city: str
    state: str
    specialty: str
    registration_number: str

    @field_validator("name", "city", "specialty", "registration_number")
    @classmethod
    def _required_text(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("is required")
        return v

    @field_validator("email")
    @classmethod
    def _email_lower(cls, v: str) -> str:
        return str(v).strip().lower()

    @field_validator("phone")
    @classmethod
    def _phone_digits(cls, v: str) -> str:
        digits = _NON_DIGITS.sub("", v or "")
        if not digits:
            raise ValueError("is required")
        if len(digits) > 11:
            raise ValueError("must have at most 11 digits")
        return digits

    @field_validator("state")
    @classmethod
    def _state_code(cls, v: str) -> str:
        v = (v or "").strip().upper()
        if not v:
            raise ValueError("is required")
        if len(v) != 2 or not v.isalpha():
            raise ValueError("must be a two-letter state code")
        return v

    @model_validator(mode="after")
    def _passwords_match(self) -> "RegistrationProfile":
        if self.confirm_password is not None and self.confirm_password != self.password:
            raise ValueError("passwords do not match")
        return self


# -----------------------------
# SESSION
# -----------------------------
class SessionStateOut(BaseModel):
    is_authenticated: bool
    is_loading: bool
    has_active_subscription: bool
    is_trial_active: bool
    role: Optional[str] = None
    actor: Optional[dict] = None
    days_left: Optional[int] = None
