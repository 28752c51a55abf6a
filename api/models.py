"""
API request and response models for Shieldgate JSON endpoints.

These Pydantic v2 models define the HTTP transport contract. They are kept
apart from the dataclasses in auth/models.py, which own the internal domain
shape. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CredentialsRequest(BaseModel):
    """Body for POST /api/auth/callback/credentials.

    Deliberately loose: the password policy lives in auth.schemas.SignInSchema
    and is applied by the sign-in action, which turns failures into the
    generic "invalid fields" message instead of a 422 listing every rule.
    """

    email: str = Field(max_length=255)
    password: str = Field(max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ProviderInfo(BaseModel):
    """One entry in GET /api/auth/providers."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: str  # "credentials" or "oauth"
    signin_url: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
