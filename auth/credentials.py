"""
auth/credentials.py -- Email/password authorization.

authorize_credentials() is the single entry point for credential sign-in.
Both the HTML form action and the JSON callback endpoint go through it so the
timing equalization [C1] cannot be bypassed by inlining a lookup.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from auth.lookup import get_user_by_email
from auth.schemas import SignInSchema, parse_form
from auth.tokens import burn_password_check, verify_password

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("shieldgate.auth")


def authorize_credentials(store: UserStore, credentials: Mapping[str, Any]) -> User | None:
    """Return the User for a valid email/password pair, None otherwise.

    Steps:
      1. Validate against SignInSchema. Invalid input never reaches the DB.
      2. Look up the user by email (DB errors are logged and read as "absent").
      3. Users without a password hash signed up through OAuth; the
         credentials provider cannot sign them in.
      4. bcrypt comparison.

    bcrypt runs on every path past validation, against a dummy hash when there
    is nothing real to compare, so an unknown email costs the same as a wrong
    password [C1].
    """
    parsed, errors = parse_form(SignInSchema, credentials)
    if parsed is None:
        logger.debug("Credential sign-in rejected by schema: %s", errors)
        return None

    user = get_user_by_email(store, parsed.email)
    if user is None or user.hashed_password is None:
        burn_password_check(parsed.password)
        return None

    if not verify_password(parsed.password, user.hashed_password):
        return None
    return user
