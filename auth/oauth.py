"""
auth/oauth.py -- Authlib OAuth/OIDC provider configuration and account linking.

Reads configuration from core.config.get_settings() at module load to decide
which providers are active. Only providers with both client ID and secret
configured get registered -- the sign-in template renders buttons from
get_enabled_providers().

Security notes:
  [H1] Email verification is mandatory. get_oauth_profile() raises ValueError
       if the provider does not confirm the email is verified.

  [H4] An OAuth identity is never silently attached to an existing account
       that was registered with the same email. resolve_oauth_user() raises
       AccountNotLinkedError instead; otherwise anyone controlling a provider
       account with a victim's address could take over the credential account.

  The OAuth state parameter (CSRF protection) is handled by Authlib via
  Starlette SessionMiddleware.

Supported providers:
  github -- Authorization code flow; static endpoints.
  google -- Authorization code flow; OIDC discovery.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from authlib.integrations.starlette_client import OAuth
from sqlalchemy.exc import IntegrityError

from auth.lookup import get_user_by_email
from auth.models import Account, User
from auth.store import to_iso
from core.config import get_settings

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("shieldgate.auth.oauth")

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

# GitHub -- static endpoints (no OIDC discovery document)
if _cfg.github_client_id and _cfg.github_client_secret:
    oauth.register(
        name="github",
        client_id=_cfg.github_client_id,
        client_secret=_cfg.github_client_secret,
        access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
        authorize_url="https://github.com/login/oauth/authorize",
        api_base_url="https://api.github.com/",
        client_kwargs={"scope": "read:user user:email"},
    )
    logger.info("GitHub OAuth provider registered")

# Google -- OIDC discovery
if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name="google",
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google OAuth provider registered")


class AccountNotLinkedError(Exception):
    """The provider's email belongs to an account that never linked this provider [H4]."""


@dataclass
class OAuthProfile:
    """Provider-neutral view of the identity returned by an OAuth sign-in."""

    subject: str  # provider's stable user ID
    email: str
    name: Optional[str] = None
    image: Optional[str] = None
    # Only a provider-confirmed address may create or sign in a user [H1].
    email_verified: bool = False


# ---------------------------------------------------------------------------
# Provider metadata
# ---------------------------------------------------------------------------


def get_enabled_providers() -> list[dict]:
    """Return {"name", "label"} for every configured OAuth provider."""
    cfg = get_settings()
    providers: list[dict] = []
    if cfg.github_client_id and cfg.github_client_secret:
        providers.append({"name": "github", "label": "GitHub"})
    if cfg.google_client_id and cfg.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    return providers


# ---------------------------------------------------------------------------
# Profile extraction -- provider-specific normalization [H1]
# ---------------------------------------------------------------------------


async def get_oauth_profile(client, provider: str, token: dict) -> OAuthProfile:
    """Extract an OAuthProfile from a provider token response.

    Raises:
        ValueError: If a verified email cannot be confirmed [H1], or the
            provider is unknown.
    """
    if provider == "github":
        return await _get_github_profile(client, token)
    elif provider == "google":
        return _get_oidc_profile(token, provider)
    else:
        raise ValueError(f"Unknown OAuth provider: {provider!r}")


async def _get_github_profile(client, token: dict) -> OAuthProfile:
    """GitHub needs two calls: /user for the ID and /user/emails for the address.

    [H1] Only an email with primary=true AND verified=true is accepted.
    """
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    profile = resp.json()

    emails_resp = await client.get("user/emails", token=token)
    emails_resp.raise_for_status()

    email: str | None = None
    for entry in emails_resp.json():
        if entry.get("primary") and entry.get("verified"):
            email = entry["email"]
            break

    if not email:
        raise ValueError(
            "GitHub OAuth: no primary verified email found. "
            "The user must verify their email address on GitHub before signing in."
        )

    return OAuthProfile(
        subject=str(profile["id"]),
        email=email,
        name=profile.get("name") or profile.get("login"),
        image=profile.get("avatar_url"),
        email_verified=True,
    )


def _get_oidc_profile(token: dict, provider: str) -> OAuthProfile:
    """Read the id_token claims Authlib parsed into token["userinfo"].

    [H1] A missing email_verified claim counts as unverified.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError(f"{provider} OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError(f"{provider} OAuth: email is not verified.")

    email = userinfo.get("email")
    subject = userinfo.get("sub")
    if not email or not subject:
        raise ValueError(f"{provider} OAuth: missing email or sub claim in userinfo")

    return OAuthProfile(
        subject=subject,
        email=email,
        name=userinfo.get("name"),
        image=userinfo.get("picture"),
        email_verified=True,
    )


# ---------------------------------------------------------------------------
# Account resolution
# ---------------------------------------------------------------------------


def resolve_oauth_user(store: UserStore, provider: str, profile: OAuthProfile, token: dict) -> User:
    """Return the user for an OAuth sign-in, creating and linking one if new.

    Flow:
      1. Unverified email -- ValueError [H1].
      2. (provider, subject) already linked -- returning user.
      3. Email already registered without this link -- AccountNotLinkedError [H4].
      4. Otherwise create the user (email verified by the provider) and its
         account link in one transaction.
    """
    if not profile.email_verified:
        raise ValueError(f"{provider} OAuth: email is not verified.")

    user = store.get_user_by_account(provider, profile.subject)
    if user is not None:
        return user

    if get_user_by_email(store, profile.email) is not None:
        raise AccountNotLinkedError(f"{profile.email} is registered without a {provider} link")

    user_id = uuid.uuid4().hex
    new_user = User(
        id=user_id,
        email=profile.email,
        username=profile.name,
        image=profile.image,
        email_verified=to_iso(datetime.now(timezone.utc)),
    )
    account = Account(
        user_id=user_id,
        type="oidc" if "id_token" in token else "oauth",
        provider=provider,
        provider_account_id=profile.subject,
        access_token=token.get("access_token"),
        refresh_token=token.get("refresh_token"),
        expires_at=token.get("expires_at"),
        token_type=token.get("token_type"),
        scope=token.get("scope"),
        id_token=token.get("id_token"),
    )
    try:
        store.create_oauth_user(new_user, account)
    except IntegrityError as exc:
        # A concurrent sign-in claimed the email or the identity between the
        # checks and the insert. Neither row was written.
        raise AccountNotLinkedError(f"{profile.email} was registered concurrently") from exc

    logger.info("New %s user %s created and linked", provider, user_id)
    return store.get_by_id(user_id)
