"""
auth/schemas.py -- Pydantic validation schemas for the sign-in and sign-up forms.

Both the HTML form handlers (web/) and the JSON endpoints (api/) validate
through these models, so the password policy is defined exactly once.

Password policy:
  - 14 to 32 characters
  - at least one lowercase letter, one uppercase letter, one digit, and one
    special character from _SPECIALS
  - no characters outside letters, digits, and _SPECIALS

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, EmailStr, Field, ValidationError, field_validator

PASSWORD_MIN_LEN = 14
PASSWORD_MAX_LEN = 32

_SPECIALS = "!@#$%^&*()_+={[}]|:;\"'<,>."
_SPECIAL_CLASS = f"[{re.escape(_SPECIALS)}]"
_ALLOWED_RE = re.compile(rf"^(?:[A-Za-z\d]|{_SPECIAL_CLASS})+$")
_COMPLEXITY_RULES = (
    re.compile(r"[a-z]"),
    re.compile(r"[A-Z]"),
    re.compile(r"\d"),
    re.compile(_SPECIAL_CLASS),
)

_COMPLEXITY_MESSAGE = (
    "Password must contain at least one lowercase letter, one uppercase letter, "
    "one digit, and one special character."
)

# Fallback messages for errors raised by pydantic itself (EmailStr, min_length)
# rather than by the validators below.
_FIELD_MESSAGES: dict[str, str] = {
    "email": "Please enter a valid email address.",
    "name": "Please enter a valid name",
    "password": "Password is required",
}


def check_password(value: str) -> str:
    """Apply the password policy. Raises ValueError with a user-facing message."""
    if len(value) < PASSWORD_MIN_LEN:
        raise ValueError(f"Password must be at least {PASSWORD_MIN_LEN} characters long")
    if len(value) > PASSWORD_MAX_LEN:
        raise ValueError(f"Password must be a maximum of {PASSWORD_MAX_LEN} characters")
    if not _ALLOWED_RE.match(value) or not all(rule.search(value) for rule in _COMPLEXITY_RULES):
        raise ValueError(_COMPLEXITY_MESSAGE)
    return value


class SignInSchema(BaseModel):
    email: EmailStr
    password: str

    @field_validator("password")
    @classmethod
    def password_policy(cls, value: str) -> str:
        return check_password(value)


class SignUpSchema(SignInSchema):
    name: str = Field(min_length=1, max_length=255)


SchemaT = TypeVar("SchemaT", bound=BaseModel)


def validation_messages(exc: ValidationError) -> dict[str, str]:
    """Flatten a ValidationError into {field: first message}.

    ValueErrors raised by our own validators keep their message; pydantic's
    built-in errors are replaced with the friendlier _FIELD_MESSAGES text.
    """
    messages: dict[str, str] = {}
    for err in exc.errors():
        field = str(err["loc"][0]) if err["loc"] else "__root__"
        if field in messages:
            continue
        ctx_error = (err.get("ctx") or {}).get("error")
        if isinstance(ctx_error, ValueError):
            messages[field] = str(ctx_error)
        else:
            messages[field] = _FIELD_MESSAGES.get(field, err["msg"])
    return messages


def parse_form(schema: type[SchemaT], values: Mapping[str, Any]) -> tuple[Optional[SchemaT], dict[str, str]]:
    """Validate a mapping against a schema without raising.

    Returns (model, {}) on success or (None, field_errors) on failure.
    """
    try:
        return schema.model_validate(dict(values)), {}
    except ValidationError as exc:
        return None, validation_messages(exc)
