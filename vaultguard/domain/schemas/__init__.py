"""Domain schemas. Request/response and validation."""

from vaultguard.domain.schemas.password import (
    GeneratedPasswordResponse,
    KeyRotationStatusResponse,
    PasswordCheckRequest,
    PasswordStrengthResponse,
)

__all__ = [
    "GeneratedPasswordResponse",
    "KeyRotationStatusResponse",
    "PasswordCheckRequest",
    "PasswordStrengthResponse",
]
