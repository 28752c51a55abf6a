"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

All of them sit on top of auth.session.auth(), which reads the session cookie
with whichever strategy is configured.

try_get_current_user() is the soft variant (returns None when anonymous).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: no imports from web/ or api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.lookup import get_user_by_id
from auth.models import User
from auth.session import SessionInfo, auth


def get_session(request: Request) -> SessionInfo | None:
    """Dependency form of auth()."""
    return auth(request)


def try_get_current_user(request: Request) -> User | None:
    """Return the signed-in User, or None.

    A JWT can outlive its user (deleted account); the DB lookup makes that
    read as anonymous.
    """
    info = auth(request)
    if info is None:
        return None
    return get_user_by_id(request.app.state.user_store, info.user.id)


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user
