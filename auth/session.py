"""
auth/session.py -- Session issuance and resolution for both session strategies.

SESSION_STRATEGY=jwt (default):
  The cookie holds a signed JWT. Nothing is persisted; signing out only
  clears the cookie. auth() trusts the signature and the exp claim.

SESSION_STRATEGY=database:
  The cookie holds an opaque random token. The sessions table maps it to a
  user and an expiry. auth() deletes expired rows on sight and slides the
  expiry forward at most once per SESSION_UPDATE_AGE; the route guard then
  re-sends the cookie so browser and row stay in step.

auth(request) is the one call pages and dependencies make to learn who is
signed in. The result is cached on request.state so the route guard and the
handler share one lookup per request.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel, ConfigDict

from auth.models import Session
from auth.store import to_iso
from auth.tokens import (
    SESSION_COOKIE,
    clear_session_cookie,
    create_session_token,
    decode_session_token,
    generate_session_token,
    session_expiry,
    set_session_cookie,
)
from core.config import get_settings

if TYPE_CHECKING:
    from fastapi import Request

    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("shieldgate.auth")

_CACHE_ATTR = "shieldgate_session"
REFRESHED_TOKEN_ATTR = "shieldgate_refreshed_token"


class SessionUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: Optional[str] = None
    image: Optional[str] = None


class SessionInfo(BaseModel):
    """What a signed-in request knows about its user. Serialized by GET /api/auth/session."""

    model_config = ConfigDict(frozen=True)

    user: SessionUser
    expires: str


def _session_info(user: User, expires: datetime) -> SessionInfo:
    return SessionInfo(
        user=SessionUser(id=user.id, email=user.email, name=user.username, image=user.image),
        expires=to_iso(expires),
    )


# ---------------------------------------------------------------------------
# Issue
# ---------------------------------------------------------------------------


def issue_session(store: UserStore, response, user: User) -> SessionInfo:
    """Start a session for user and write its cookie onto response."""
    settings = get_settings()
    expires = session_expiry()
    if settings.session_strategy == "database":
        token = generate_session_token()
        store.create_session(Session(user_id=user.id, session_token=token, expires=to_iso(expires)))
    else:
        token = create_session_token(user, expires)
    set_session_cookie(response, token)
    logger.info("Session issued for user %s (strategy=%s)", user.id, settings.session_strategy)
    return _session_info(user, expires)


# ---------------------------------------------------------------------------
# Resolve
# ---------------------------------------------------------------------------


def auth(request: Request) -> SessionInfo | None:
    """Return the current SessionInfo, or None when the request is anonymous."""
    if hasattr(request.state, _CACHE_ATTR):
        return getattr(request.state, _CACHE_ATTR)

    token = request.cookies.get(SESSION_COOKIE)
    info: SessionInfo | None = None
    if token:
        if get_settings().session_strategy == "database":
            info = _resolve_database_session(request, token)
        else:
            info = _resolve_jwt_session(token)

    setattr(request.state, _CACHE_ATTR, info)
    return info


def _resolve_jwt_session(token: str) -> SessionInfo | None:
    payload = decode_session_token(token)
    if payload is None:
        return None
    return SessionInfo(
        user=SessionUser(
            id=payload["sub"],
            email=payload["email"],
            name=payload.get("name"),
            image=payload.get("picture"),
        ),
        expires=to_iso(datetime.fromtimestamp(payload["exp"], tz=timezone.utc)),
    )


def _resolve_database_session(request: Request, token: str) -> SessionInfo | None:
    settings = get_settings()
    store: UserStore = request.app.state.user_store
    found = store.get_session_and_user(token)
    if found is None:
        return None
    session, user = found

    now = datetime.now(timezone.utc)
    expires = datetime.fromisoformat(session.expires)
    if expires <= now:
        store.delete_session(token)
        logger.info("Expired session removed for user %s", user.id)
        return None

    # Slide the expiry once the session is older than update_age.
    issued_at = expires - timedelta(seconds=settings.session_max_age)
    if now - issued_at > timedelta(seconds=settings.session_update_age):
        expires = session_expiry()
        store.update_session_expiry(token, to_iso(expires))
        setattr(request.state, REFRESHED_TOKEN_ATTR, token)

    return _session_info(user, expires)


def refresh_cookie_if_extended(request: Request, response) -> None:
    """Re-send the session cookie when auth() slid a database session forward."""
    token = getattr(request.state, REFRESHED_TOKEN_ATTR, None)
    if token and getattr(request.state, _CACHE_ATTR, None) is not None:
        set_session_cookie(response, token)


# ---------------------------------------------------------------------------
# End
# ---------------------------------------------------------------------------


def end_session(request: Request, response) -> None:
    """Revoke the current session (database strategy) and clear the cookie."""
    token = request.cookies.get(SESSION_COOKIE)
    if token and get_settings().session_strategy == "database":
        request.app.state.user_store.delete_session(token)
    clear_session_cookie(response)
    setattr(request.state, _CACHE_ATTR, None)
