"""
auth/tokens.py -- Password hashing, session tokens, and the session cookie.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). The cost factor comes
       from Settings.bcrypt_rounds (default 10). _DUMMY_HASH enables timing
       equalization in auth/credentials.py so response time does not reveal
       whether an email is registered [C1].

  JWT sessions: python-jose with HS256, signed with SECRET_KEY. The token
       carries the user's id (sub), email, name, picture and expiry.
       decode_session_token() returns None on any failure -- callers treat
       that as "no session".

  Database sessions: secrets.token_urlsafe(32) gives 256 bits of entropy.
       The token itself is the lookup key in the sessions table.

  SECRET_KEY: sourced from core.config.get_settings(), which validates the key
       at startup.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User

logger = logging.getLogger("shieldgate.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

SESSION_COOKIE = "shieldgate.session-token"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    The sign-up schema caps passwords at 32 ASCII characters, well below
    bcrypt's 72-byte input limit.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash or oversized input.
        return False


# Timing equalization dummy hash [C1]. Computed once at module load.
_DUMMY_HASH: str = hash_password("shieldgate_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run a bcrypt comparison whose result is discarded [C1]."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# JWT session tokens
# ---------------------------------------------------------------------------


def create_session_token(user: User, expires: datetime) -> str:
    """Encode a signed JWT describing the signed-in user."""
    payload = {
        "sub": user.id,
        "email": user.email,
        "name": user.username,
        "picture": user.image,
        "iat": datetime.now(timezone.utc),
        "exp": expires,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_session_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure.

    python-jose checks the signature and the exp claim. Tokens without a
    subject or email are rejected as well.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if not payload.get("sub") or not payload.get("email"):
        return None
    return payload


# ---------------------------------------------------------------------------
# Database session tokens
# ---------------------------------------------------------------------------


def generate_session_token() -> str:
    return secrets.token_urlsafe(32)


def session_expiry() -> datetime:
    """Return the expiry timestamp for a session issued now."""
    return datetime.now(timezone.utc) + timedelta(seconds=_settings.session_max_age)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches the session lifetime so both expire together.
    """
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=_settings.session_max_age,
        path="/",
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(SESSION_COOKIE, path="/")
