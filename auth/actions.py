"""
auth/actions.py -- Sign-up and sign-in form actions.

Each action validates, talks to the store, and returns an ActionResult the
caller renders. Actions never touch the HTTP response: issuing the session
cookie after a successful sign-in is the caller's job, because only the
caller owns the response object.

User-facing messages are fixed strings. Field-level detail travels in
ActionResult.field_errors for the form to show next to each input.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy.exc import IntegrityError

from auth.credentials import authorize_credentials
from auth.lookup import get_user_by_email
from auth.models import User
from auth.schemas import SignInSchema, SignUpSchema, parse_form
from auth.tokens import hash_password

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("shieldgate.auth")

SIGN_UP_INVALID = "Invalid fields!"
SIGN_UP_EMAIL_TAKEN = "Email address is already in use."
SIGN_UP_SUCCESS = "Sign up successful!"
SIGN_IN_INVALID = "Invalid fields! Please check your input."
SIGN_IN_FAILED = "Invalid credentials!"
SIGN_IN_SUCCESS = "Sign in successful!"


@dataclass
class ActionResult:
    error: Optional[str] = None
    success: Optional[str] = None
    field_errors: dict[str, str] = field(default_factory=dict)
    user: Optional[User] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def sign_up(store: UserStore, values: Mapping[str, Any]) -> ActionResult:
    """Register a credential user.

    The submitted name becomes the username. Nothing is written unless the
    values pass SignUpSchema and the email is free.
    """
    parsed, errors = parse_form(SignUpSchema, values)
    if parsed is None:
        logger.debug("Sign-up rejected by schema: %s", errors)
        return ActionResult(error=SIGN_UP_INVALID, field_errors=errors)

    if get_user_by_email(store, parsed.email) is not None:
        return ActionResult(error=SIGN_UP_EMAIL_TAKEN, field_errors={"email": SIGN_UP_EMAIL_TAKEN})

    new_user = User(
        email=parsed.email,
        username=parsed.name,
        hashed_password=hash_password(parsed.password),
    )
    try:
        user_id = store.create_user(new_user)
    except IntegrityError:
        # Another request registered the same email after our lookup.
        return ActionResult(error=SIGN_UP_EMAIL_TAKEN, field_errors={"email": SIGN_UP_EMAIL_TAKEN})

    logger.info("User %s signed up", user_id)
    return ActionResult(success=SIGN_UP_SUCCESS)


def sign_in(store: UserStore, values: Mapping[str, Any]) -> ActionResult:
    """Check credentials. On success the result carries the authorized user."""
    parsed, errors = parse_form(SignInSchema, values)
    if parsed is None:
        logger.debug("Sign-in rejected by schema: %s", errors)
        return ActionResult(error=SIGN_IN_INVALID, field_errors=errors)

    user = authorize_credentials(store, {"email": parsed.email, "password": parsed.password})
    if user is None:
        logger.info("Credential sign-in failed")
        return ActionResult(error=SIGN_IN_FAILED)

    return ActionResult(success=SIGN_IN_SUCCESS, user=user)
