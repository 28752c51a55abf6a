"""
auth/lookup.py -- Error-tolerant user lookups.

Sign-in and sign-up treat "the database could not answer" the same as "no
such user": the ORM error is logged and None comes back. The store itself
still raises, so admin tooling and tests see real failures.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("shieldgate.auth")


def get_user_by_email(store: UserStore, email: str) -> User | None:
    """Return the user with this email, or None if absent or the query failed."""
    try:
        return store.get_by_email(email)
    except SQLAlchemyError as exc:
        logger.error("Database error looking up user by email: %s", exc)
        return None


def get_user_by_id(store: UserStore, user_id: str) -> User | None:
    """Return the user with this ID, or None if absent or the query failed."""
    try:
        return store.get_by_id(user_id)
    except SQLAlchemyError as exc:
        logger.error("Database error looking up user %s: %s", user_id, exc)
        return None
