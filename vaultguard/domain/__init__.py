"""Domain layer: request entities the security pipeline inspects, API schemas."""

from vaultguard.domain.models import InboundRequest, UploadedFile
from vaultguard.domain.schemas import (
    GeneratedPasswordResponse,
    KeyRotationStatusResponse,
    PasswordCheckRequest,
    PasswordStrengthResponse,
)

__all__ = [
    "GeneratedPasswordResponse",
    "InboundRequest",
    "KeyRotationStatusResponse",
    "PasswordCheckRequest",
    "PasswordStrengthResponse",
    "UploadedFile",
]
