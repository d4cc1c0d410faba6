"""Domain models. Transport-neutral request entities."""

from vaultguard.domain.models.request import InboundRequest, UploadedFile

__all__ = [
    "InboundRequest",
    "UploadedFile",
]
