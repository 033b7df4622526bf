# lume/auth.py
from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from lume.clock import utcnow

# -------------------------------------------------------------------
# Password hashing
# -------------------------------------------------------------------
pwd_context = CryptContext(
    schemes=["bcrypt_sha256", "bcrypt"],
    deprecated="auto",
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def burn_password_check() -> None:
    """
    Spend the same time as a real verify when the email is unknown,
    so response timing does not reveal which emails have accounts.
    """
    pwd_context.dummy_verify()


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def new_token_id() -> str:
    return secrets.token_urlsafe(24)


# -------------------------------------------------------------------
# JWT create/verify
# -------------------------------------------------------------------
def create_access_token(
    *,
    identity_id: int,
    token_id: str,
    subject: str,
    secret_key: str,
    algorithm: str = "HS256",
    expires_minutes: int = 1440,
    issued_at: Optional[datetime] = None,
) -> tuple[str, datetime]:
    """
    Token claims:
      sub: email (debug/compat)
      iid: identity id
      jti: auth_tokens row id (revocation handle)
      exp: expiry datetime

    Returns (token, expires_at).
    """
    issued = issued_at or utcnow()
    expire = issued + timedelta(minutes=expires_minutes)
    payload = {
        "sub": subject,
        "iid": int(identity_id),
        "jti": token_id,
        "exp": expire,
    }
    return jwt.encode(payload, secret_key, algorithm=algorithm), expire


def decode_token(token: str, *, secret_key: str, algorithm: str = "HS256") -> dict:
    try:
        payload = jwt.decode(token, secret_key, algorithms=[algorithm])
        if not payload.get("iid") or not payload.get("jti"):
            raise ValueError("Token missing required claims")
        return payload
    except (JWTError, ValueError) as e:
        raise ValueError("Invalid token") from e
