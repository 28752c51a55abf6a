"""
api/main.py -- FastAPI application entry point for Shieldgate.

Run with:  uvicorn asgi:app --reload
           python main.py serve

Middleware stack (outermost to innermost, as a request sees it):
  1. TrustedHostMiddleware -- rejects unexpected Host headers
  2. CORSMiddleware        -- CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- per-route rate limits from api.limiter
  4. SessionMiddleware     -- Starlette signed cookie Authlib keeps OAuth state in
  5. log_requests          -- method, path, status, latency for every request
  6. route_guard           -- classifies the path; anonymous requests to guarded
                              pages are redirected to the sign-in page

The docs pages (/docs, /redoc, /openapi.json) are unlisted routes, so the
guard keeps them behind sign-in.

Starlette wraps each newly added middleware around the existing stack, so the
last one registered is the first one a request meets.

Lifespan handles startup (user store, OAuth registry, session purge task) and
shutdown (cancel purge task, close the store) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from auth.oauth import oauth as oauth_client
from auth.session import auth, refresh_cookie_if_extended
from auth.store import UserStore
from core.config import get_settings
from core.routing import API_AUTH_PREFIX, GUARDED_KINDS, classify_route, resolve_redirect

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("shieldgate.api")
guard_logger = logging.getLogger("shieldgate.guard")

_settings = get_settings()

_PURGE_INTERVAL_SECONDS = 6 * 60 * 60

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired database sessions every 6 hours.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        removed = app.state.user_store.delete_expired_sessions()
        if removed:
            logger.info("Purged %d expired sessions", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create shared resources on startup and release them on shutdown."""
    logger.info("Shieldgate starting up (session_strategy=%s)", _settings.session_strategy)
    app.state.user_store = UserStore(_settings.database_url)
    app.state.oauth = oauth_client
    logger.info("User store initialized")
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.user_store.close()
    logger.info("Shieldgate shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Shieldgate",
    description="Registration, credential and OAuth sign-in, sessions, and route protection.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Route guard
#
# Pattern: Interceptor. Every request is classified before any handler runs.
# The session is only resolved for guarded paths, so API-auth, public and
# static requests never pay for a session lookup here.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def route_guard(request: Request, call_next):
    path = request.url.path
    kind = classify_route(path)
    guard_logger.debug("ROUTE %s (%s)", path, kind.value)

    if kind in GUARDED_KINDS:
        target = resolve_redirect(path, auth(request) is not None)
        if target is not None:
            guard_logger.info("Redirecting anonymous request for %s to sign-in", path)
            return RedirectResponse(target, status_code=302)

    response = await call_next(request)
    refresh_cookie_if_extended(request, response)
    return response


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Framework middleware
#
# Registered after the two function middlewares so they wrap them: a request
# meets TrustedHost first, then CORS, SlowAPI and SessionMiddleware, and only
# then request logging and the route guard.
# ---------------------------------------------------------------------------

# SessionMiddleware is required by Authlib to store the OAuth state value
# between the authorization redirect and the callback. It is separate from the
# Shieldgate session cookie, which auth/tokens.py writes.
app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.secret_key,
    same_site="lax",
    https_only=_settings.secure_cookies,
)

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix=API_AUTH_PREFIX, tags=["Auth"])
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# JSON callers always get the same ErrorResponse envelope.
# ---------------------------------------------------------------------------


def _retry_after(request: Request, exc: RateLimitExceeded) -> int:
    """Seconds until the exhausted rate limit window resets.

    Reads the window the limiter stored on request.state; falls back to the
    full window length of the limit that was hit.
    """
    current = getattr(request.state, "view_rate_limit", None)
    if current is not None:
        item, args = current
        reset_at, _remaining = request.app.state.limiter.limiter.get_window_stats(item, *args)
        return max(1, int(reset_at - time.time()) + 1)
    return exc.limit.limit.get_expiry()


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error and a Retry-After header."""
    retry_after = _retry_after(request, exc)
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly here so it is reachable regardless of router registration.
# Listed in PUBLIC_ROUTES, so the guard lets it through. No rate limit.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return liveness and current version."""
    return HealthResponse(version=__version__)
