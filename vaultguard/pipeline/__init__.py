"""Request security pipeline and response headers. No FastAPI."""

from vaultguard.pipeline.headers import apply_security_headers
from vaultguard.pipeline.orchestrator import PipelineResponse, SecurityPipeline

__all__ = [
    "PipelineResponse",
    "SecurityPipeline",
    "apply_security_headers",
]
