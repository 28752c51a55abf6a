"""
api/routes/auth.py -- Authentication endpoints under the API-auth prefix.

Everything here is mounted at /api/auth, which the route guard never
redirects. Each endpoint decides for itself what an anonymous caller gets.

Routes:
  GET  /api/auth/session                -- current session JSON, or null
  GET  /api/auth/providers              -- credentials + configured OAuth providers
  POST /api/auth/callback/credentials   -- JSON email/password sign-in; sets session cookie
  GET  /api/auth/signin/{provider}      -- redirect to the OAuth provider
  GET  /api/auth/callback/{provider}    -- OAuth callback; sets session cookie, redirects
  POST /api/auth/signout                -- revoke session, clear cookie, redirect to /

Route registration order: /callback/credentials must be registered before
/callback/{provider} or FastAPI captures "credentials" as a provider name.

Security:
  [H2] Credential sign-in is rate-limited per IP (SIGNIN_RATE_LIMIT).
  [C1] authorize_credentials() provides timing equalization -- use it via the
       sign-in action, never inline a lookup + compare.
  [C2] OAuth ?next= is validated with safe_next() before it is stored.
  [M5] Cache-Control: no-store on every response that sets a session cookie.
"""

import logging
from typing import Optional

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import limiter
from api.models import CredentialsRequest, ErrorDetail, ErrorResponse, ProviderInfo
from auth.actions import sign_in
from auth.dependencies import get_session
from auth.oauth import AccountNotLinkedError, get_enabled_providers, get_oauth_profile, resolve_oauth_user
from auth.session import SessionInfo, end_session, issue_session
from auth.store import UserStore
from core.config import get_settings
from core.routing import API_AUTH_PREFIX, DEFAULT_SIGNIN_PATH, safe_next

logger = logging.getLogger("shieldgate.api")

_NEXT_SESSION_KEY = "oauth_next"

router = APIRouter()


def _signin_error(code: str) -> RedirectResponse:
    return RedirectResponse(f"{DEFAULT_SIGNIN_PATH}?error={code}", status_code=302)


# ---------------------------------------------------------------------------
# Session and provider discovery
# ---------------------------------------------------------------------------


@router.get("/session", response_model=Optional[SessionInfo])
async def read_session(session: Optional[SessionInfo] = Depends(get_session)) -> Optional[SessionInfo]:
    """Return the current session, or null when signed out."""
    return session


@router.get("/providers", response_model=list[ProviderInfo])
async def list_providers() -> list[ProviderInfo]:
    """List every way to sign in. Credentials is always available."""
    providers = [
        ProviderInfo(
            id="credentials",
            name="Credentials",
            type="credentials",
            signin_url=f"{API_AUTH_PREFIX}/callback/credentials",
        )
    ]
    for p in get_enabled_providers():
        providers.append(
            ProviderInfo(
                id=p["name"],
                name=p["label"],
                type="oauth",
                signin_url=f"{API_AUTH_PREFIX}/signin/{p['name']}",
            )
        )
    return providers


# ---------------------------------------------------------------------------
# Credential sign-in
# ---------------------------------------------------------------------------


@router.post("/callback/credentials", response_model=SessionInfo)
@limiter.limit(get_settings().signin_rate_limit)  # [H2]
def credentials_callback(request: Request, response: Response, body: CredentialsRequest):
    """Sign in with email and password.

    Returns 400 for input that fails the schema and 401 for a wrong email or
    password. Both carry fixed messages so nothing about the account leaks.
    On success the session cookie rides on the injected response.
    """
    user_store: UserStore = request.app.state.user_store
    result = sign_in(user_store, body.model_dump())

    if result.user is None:
        code, status = ("invalid_fields", 400) if result.field_errors else ("credentials_signin", 401)
        resp = JSONResponse(
            status_code=status,
            content=ErrorResponse(error=ErrorDetail(code=code, message=result.error)).model_dump(),
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    info = issue_session(user_store, response, result.user)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return info


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.get("/signin/{provider}")
async def oauth_signin(request: Request, provider: str) -> RedirectResponse:
    """Redirect the browser to the OAuth provider's authorization page.

    The provider name is checked against the enabled list first so a crafted
    name cannot reach the Authlib registry.
    """
    enabled = {p["name"] for p in get_enabled_providers()}
    if provider not in enabled:
        return _signin_error("oauth_failed")

    request.session[_NEXT_SESSION_KEY] = safe_next(request.query_params.get("next"))  # [C2]
    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/callback/{provider}", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Handle the provider callback and start a session.

    Flow:
      1. Exchange the authorization code (Authlib checks the state parameter).
      2. Extract a verified profile -- ValueError if the email is unverified [H1].
      3. Find or create the linked user -- AccountNotLinkedError on an email
         that belongs to an unlinked account [H4].
      4. Issue the session and redirect to the stored ?next= target.
    """
    enabled = {p["name"] for p in get_enabled_providers()}
    if provider not in enabled:
        return _signin_error("oauth_failed")

    user_store: UserStore = request.app.state.user_store
    client = request.app.state.oauth.create_client(provider)

    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("OAuth token exchange failed for provider %r", provider)
        return _signin_error("oauth_failed")

    try:
        profile = await get_oauth_profile(client, provider, token)
        user = resolve_oauth_user(user_store, provider, profile, token)
    except ValueError:
        logger.warning("OAuth sign-in rejected: unverified or missing email from %r", provider)
        return _signin_error("oauth_failed")
    except AccountNotLinkedError:
        logger.warning("OAuth sign-in rejected: %r identity not linked to existing account", provider)
        return _signin_error("oauth_account_not_linked")

    next_url = safe_next(request.session.pop(_NEXT_SESSION_KEY, None))
    resp = RedirectResponse(next_url, status_code=302)
    issue_session(user_store, resp, user)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Sign-out
# ---------------------------------------------------------------------------


@router.post("/signout")
async def signout(request: Request) -> RedirectResponse:
    """End the session and send the browser home."""
    resp = RedirectResponse("/", status_code=303)
    end_session(request, resp)
    return resp
