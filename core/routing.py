"""
core/routing.py -- Route classification for the route guard middleware.

Every request path falls into exactly one RouteKind:

  API_AUTH   -- starts with API_AUTH_PREFIX. Sign-in, callback, session and
                sign-out endpoints must stay reachable without a session.
  STATIC     -- stylesheets, scripts, images and other files. Never guarded.
  PUBLIC     -- listed in PUBLIC_ROUTES (exact match).
  PROTECTED  -- listed in PROTECTED_ROUTES (exact match).
  UNLISTED   -- anything else. Treated like PROTECTED for anonymous users.

resolve_redirect() turns (path, authenticated) into a redirect target or
None (allow). It is pure so it can be unit tested without an ASGI stack.

Layer rule: core/ is the kernel. No imports from api/, web/, or auth/.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Optional
from urllib.parse import quote

# ---------------------------------------------------------------------------
# Route tables
# ---------------------------------------------------------------------------

PUBLIC_ROUTES: list[str] = [
    "/",
    "/auth/signin",
    "/auth/signup",
    "/api/health",
]

PROTECTED_ROUTES: list[str] = [
    "/settings",
]

API_AUTH_PREFIX = "/api/auth"

# Where anonymous users are sent when they hit a guarded page.
DEFAULT_SIGNIN_PATH = "/auth/signin"

# Where users land after a successful sign-in when no ?next= is given.
DEFAULT_LOGIN_REDIRECT = "/settings"

_STATIC_PREFIX = "/static/"
_STATIC_FILE_RE = re.compile(
    r"\.(?:html?|css|js(?!on)|jpe?g|webp|png|gif|svg|ttf|woff2?|ico|csv|docx?|xlsx?|zip|webmanifest)$",
    re.IGNORECASE,
)


class RouteKind(str, Enum):
    API_AUTH = "api_auth"
    STATIC = "static"
    PUBLIC = "public"
    PROTECTED = "protected"
    UNLISTED = "unlisted"


# Kinds that need a session. Everything else is always let through.
GUARDED_KINDS = frozenset({RouteKind.PROTECTED, RouteKind.UNLISTED})


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def is_static_asset(path: str) -> bool:
    """Return True for files the guard should never intercept."""
    return path.startswith(_STATIC_PREFIX) or bool(_STATIC_FILE_RE.search(path))


def classify_route(path: str) -> RouteKind:
    """Classify a request path. API-auth wins over every list membership."""
    if path.startswith(API_AUTH_PREFIX):
        return RouteKind.API_AUTH
    if is_static_asset(path):
        return RouteKind.STATIC
    if path in PUBLIC_ROUTES:
        return RouteKind.PUBLIC
    if path in PROTECTED_ROUTES:
        return RouteKind.PROTECTED
    return RouteKind.UNLISTED


def signin_redirect(path: str) -> str:
    """Sign-in URL that returns the user to path afterwards."""
    return f"{DEFAULT_SIGNIN_PATH}?next={quote(path, safe='/')}"


def resolve_redirect(path: str, authenticated: bool) -> Optional[str]:
    """Return the sign-in redirect target for a request, or None to allow it.

    Anonymous requests to PROTECTED or UNLISTED paths are sent to
    DEFAULT_SIGNIN_PATH with the requested path in ?next= so the sign-in
    handler can send the user back afterwards.
    """
    if classify_route(path) not in GUARDED_KINDS or authenticated:
        return None
    return signin_redirect(path)


def safe_next(next_url: Optional[str]) -> str:
    """Validate a post-sign-in redirect target. Only accept relative paths. [C2]

    Rejects absolute URLs (https://attacker.com) and protocol-relative URLs
    (//attacker.com), both of which would redirect off-site after sign-in.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return DEFAULT_LOGIN_REDIRECT
