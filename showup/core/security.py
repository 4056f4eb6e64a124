"""Credential service: password hashing, signed tokens, and input policies.

Everything here is synchronous and free of I/O. Token verification never
raises; any invalid, expired or mis-signed token yields ``None``.
"""

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

import bcrypt
import jwt as pyjwt

from showup.core.config import get_settings

JWT_ALGORITHM = "HS256"
MIN_PASSWORD_LENGTH = 8

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims carried by an access or refresh token."""

    user_id: str
    email: str
    kind: TokenKind


def hash_password(password: str) -> str:
    rounds = get_settings().bcrypt_rounds
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def _lifetime(kind: TokenKind) -> timedelta:
    settings = get_settings()
    if kind == TokenKind.ACCESS:
        return timedelta(minutes=settings.access_token_minutes)
    return timedelta(days=settings.refresh_token_days)


def issue_token(user_id: str, email: str, kind: TokenKind) -> str:
    """Sign a token for ``user_id`` valid for the lifetime of ``kind``."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email,
        "type": kind.value,
        "iat": now,
        "exp": now + _lifetime(kind),
        # Two tokens issued in the same second must still differ
        "jti": uuid.uuid4().hex,
    }
    return pyjwt.encode(payload, get_settings().jwt_secret, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> TokenClaims | None:
    try:
        payload = pyjwt.decode(
            token,
            get_settings().jwt_secret,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["sub", "exp", "type"]},
        )
    except pyjwt.InvalidTokenError:
        return None

    try:
        kind = TokenKind(payload["type"])
    except ValueError:
        return None

    return TokenClaims(user_id=payload["sub"], email=payload.get("email", ""), kind=kind)


def refresh_token_expiry() -> datetime:
    return datetime.now(timezone.utc) + _lifetime(TokenKind.REFRESH)


def validate_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def validate_password(password: str) -> str | None:
    """Return the reason ``password`` is rejected, or None when acceptable."""
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    if not re.search(r"[A-Z]", password):
        return "Password must contain at least one uppercase letter"
    if not re.search(r"[a-z]", password):
        return "Password must contain at least one lowercase letter"
    if not re.search(r"[0-9]", password):
        return "Password must contain at least one number"
    return None
