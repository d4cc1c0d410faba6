"""Pydantic schemas for the password API. Strict validation, no DB or infrastructure."""

from typing import List

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class PasswordCheckRequest(BaseModel):
    """Password to score. Never persisted or logged."""

    password: str = Field(..., min_length=1, max_length=1024)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class PasswordStrengthResponse(BaseModel):
    strength: int = Field(..., ge=1, le=5)
    description: str
    compromised: bool
    issues: List[str] = Field(default_factory=list)


class GeneratedPasswordResponse(BaseModel):
    password: str
    strength: int = Field(..., ge=1, le=5)
    description: str


class KeyRotationStatusResponse(BaseModel):
    active_version: int
    needs_rotation: bool
    last_rotation: str | None = None
    days_since_rotation: int | None = None
    next_rotation_due: str | None = None
