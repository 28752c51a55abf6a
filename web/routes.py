"""
web/routes.py -- Jinja2 template routes for the Shieldgate web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (same user store, same OAuth registry) but return HTML instead of JSON.

The route guard in api/main.py has already redirected anonymous requests for
guarded pages by the time a handler here runs; handlers still check the
session where they render user data.

Routes:
  GET  /               -- intro page (public)
  GET  /auth/signin    -- sign-in form with OAuth buttons (public)
  POST /auth/signin    -- handle credential sign-in, set session cookie, redirect
  GET  /auth/signup    -- sign-up form (public)
  POST /auth/signup    -- handle registration, render success or error
  GET  /settings       -- session details and sign-out form (protected)
"""

import json
import logging
from pathlib import Path

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from api.limiter import limiter
from auth.actions import sign_in, sign_up
from auth.oauth import get_enabled_providers
from auth.session import auth, issue_session
from auth.store import UserStore
from core.config import get_settings
from core.routing import API_AUTH_PREFIX, DEFAULT_LOGIN_REDIRECT, safe_next, signin_redirect

logger = logging.getLogger("shieldgate.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# layout.html calls auth(request) to decide between "Sign in" and "Settings"
# links without every handler passing the session in.
templates.env.globals["auth"] = auth
templates.env.globals["API_AUTH_PREFIX"] = API_AUTH_PREFIX
router = APIRouter()

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Whitelist mapping for ?error= query params on /auth/signin [M3].
# The raw query param is NEVER passed to templates -- only the message from
# this dict is. Prevents reflected XSS via crafted error query strings.
_ERROR_MESSAGES: dict[str, str] = {
    "oauth_failed": "OAuth sign-in failed. Please try again.",
    "oauth_account_not_linked": "That email is already registered. Sign in with your password instead.",
}


def _signin_context(request: Request, **extra) -> dict:
    context = {
        "providers": get_enabled_providers(),
        "next": safe_next(request.query_params.get("next")),
        "error_msg": None,
        "field_errors": {},
        "email": "",
    }
    context.update(extra)
    return context


# ---------------------------------------------------------------------------
# GET / -- intro page
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def home(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "home.html", {"session": auth(request)})


# ---------------------------------------------------------------------------
# Sign-in
# ---------------------------------------------------------------------------


@router.get("/auth/signin", response_class=HTMLResponse)
def signin_form(request: Request) -> HTMLResponse:
    """Render the sign-in page with the credentials form and OAuth buttons."""
    # Signed-in users have nothing to do here.
    if auth(request) is not None:
        return RedirectResponse(safe_next(request.query_params.get("next")), status_code=302)

    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""))
    return templates.TemplateResponse(request, "signin.html", _signin_context(request, error_msg=error_msg))


@router.post("/auth/signin", response_class=HTMLResponse)
@limiter.limit(get_settings().signin_rate_limit)  # [H2]
def signin_post(
    request: Request,
    email: str = Form(default=""),
    password: str = Form(default=""),
    next: str = Form(default=""),
) -> HTMLResponse:
    """Handle the credentials form. Success redirects with 303 so the browser issues a GET."""
    user_store: UserStore = request.app.state.user_store
    result = sign_in(user_store, {"email": email, "password": password})

    if result.user is None:
        logger.info("Sign-in form rejected from %s", request.client.host if request.client else "unknown")
        return templates.TemplateResponse(
            request,
            "signin.html",
            _signin_context(
                request,
                error_msg=result.error,
                field_errors=result.field_errors,
                email=email,
                next=safe_next(next),
            ),
        )

    resp = RedirectResponse(safe_next(next), status_code=303)  # [C2]
    issue_session(user_store, resp, result.user)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Sign-up
# ---------------------------------------------------------------------------


@router.get("/auth/signup", response_class=HTMLResponse)
def signup_form(request: Request) -> HTMLResponse:
    if auth(request) is not None:
        return RedirectResponse(DEFAULT_LOGIN_REDIRECT, status_code=302)
    return templates.TemplateResponse(
        request,
        "signup.html",
        {"error_msg": None, "success_msg": None, "field_errors": {}, "email": "", "name": ""},
    )


@router.post("/auth/signup", response_class=HTMLResponse)
def signup_post(
    request: Request,
    email: str = Form(default=""),
    password: str = Form(default=""),
    name: str = Form(default=""),
) -> HTMLResponse:
    """Handle registration. The page re-renders with either message."""
    user_store: UserStore = request.app.state.user_store
    result = sign_up(user_store, {"email": email, "password": password, "name": name})
    if result.error:
        logger.info("Sign-up form rejected: %s", result.error)
    return templates.TemplateResponse(
        request,
        "signup.html",
        {
            "error_msg": result.error,
            "success_msg": result.success,
            "field_errors": result.field_errors,
            # Keep what the user typed on error; clear the form on success.
            "email": email if result.error else "",
            "name": name if result.error else "",
        },
    )


# ---------------------------------------------------------------------------
# GET /settings -- protected
# ---------------------------------------------------------------------------


@router.get("/settings", response_class=HTMLResponse)
def settings_page(request: Request) -> HTMLResponse:
    session = auth(request)
    if session is None:
        return RedirectResponse(signin_redirect(request.url.path), status_code=302)
    session_json = json.dumps(session.model_dump(), indent=2)
    return templates.TemplateResponse(request, "settings.html", {"session": session, "session_json": session_json})
