"""
API request and response models for the SRP auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Field names are snake_case in Python and camelCase on the wire
(sessionId, serverPublicEphemeral, ...) to match the browser client.

Validation here is shape-only: lengths, character classes, hex syntax. Whether
a salt/verifier pair is meaningful is the SRP engine's business.
"""

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

USERNAME_PATTERN = r"^[\w-]+$"
HEX_PATTERN = r"^[0-9a-fA-F]+$"

# 2048-bit group: A, B, verifier fit in 512 hex chars; proofs in 128 (SHA-512).
# Leave headroom, reject megabyte payloads.
_MAX_HEX = 1024

_Hex = Annotated[str, Field(min_length=1, max_length=_MAX_HEX, pattern=HEX_PATTERN)]
_Token = Annotated[str, Field(min_length=1, max_length=4096)]


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class _WireResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_WireModel):
    """Request body for POST /api/v1/auth/register.

    salt and verifier are computed client-side from the password; the server
    never receives the password itself.
    """

    username: str = Field(
        min_length=3,
        max_length=32,
        pattern=USERNAME_PATTERN,
        description="Letters, numbers, underscores and hyphens only.",
    )
    salt: _Hex
    verifier: _Hex
    turnstile_token: _Token


class LoginStep1Request(_WireModel):
    username: str = Field(min_length=1, max_length=32)
    turnstile_token: _Token


class LoginStep2Request(_WireModel):
    session_id: str = Field(min_length=1, max_length=128)
    client_public_ephemeral: _Hex  # A
    client_proof: _Hex  # M1


class RefreshRequest(_WireModel):
    refresh_token: _Token


class LogoutRequest(_WireModel):
    refresh_token: Optional[_Token] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class SuccessResponse(_WireResponse):
    success: bool = True


class LoginStep1Response(_WireResponse):
    session_id: str
    salt: str
    server_public_ephemeral: str  # B


class LoginStep2Response(_WireResponse):
    server_proof: str  # M2
    access_token: str
    refresh_token: str


class TokenPairResponse(_WireResponse):
    access_token: str
    refresh_token: str


class MeResponse(_WireResponse):
    id: str
    username: str
    created_at: Optional[str] = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Envelope for every error response: {"error": {...}}."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = {}
