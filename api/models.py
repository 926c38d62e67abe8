"""
API request and response models for PatronAuth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, ValidationError

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class AuthCredentials(BaseModel):
    """JSON body of POST /api/v1/user/Auth.

    Both fields are optional on purpose: a missing username or password is an
    invalid login (401 / APA -1), not a validation error (422).
    """

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    username: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_body(cls, raw: bytes) -> "AuthCredentials":
        """Parse a raw request body. Empty or malformed bodies give empty credentials."""
        if not raw:
            return cls()
        try:
            return cls.model_validate_json(raw)
        except ValidationError:
            return cls()


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
