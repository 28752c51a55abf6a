"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; the store and routes do the work.

Timestamps are ISO 8601 UTC strings, matching what the store writes.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A registered identity.

    email is the unique natural key. Credential users and OAuth users share
    the same table: hashed_password is None for OAuth-only users, and
    email_verified is stamped when a provider confirms the address.
    """

    email: str
    id: str | None = None
    username: str | None = None
    email_verified: str | None = None
    image: str | None = None
    hashed_password: str | None = None  # None = OAuth-only user
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Account:
    """Links a User to an OAuth provider identity.

    (provider, provider_account_id) is unique. The provider's tokens are kept
    so later API calls on the user's behalf remain possible.
    """

    user_id: str
    provider: str  # "github", "google"
    provider_account_id: str  # provider's stable user ID
    type: str = "oauth"  # "oauth" or "oidc"
    id: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: int | None = None  # epoch seconds
    token_type: str | None = None
    scope: str | None = None
    id_token: str | None = None


@dataclass
class Session:
    """A database-backed session. Only used with SESSION_STRATEGY=database."""

    user_id: str
    session_token: str
    expires: str
    id: str | None = None
