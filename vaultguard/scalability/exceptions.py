"""Scalability-layer exceptions. Typed, no HTTP."""


class ScalabilityError(Exception):
    """Base for all shared-state errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class StoreUnavailableError(ScalabilityError):
    """Raised when the shared store cannot be reached. Callers must fail closed."""


class LockUnavailableError(StoreUnavailableError):
    """Raised when a distributed lock could not be obtained within the retry budget."""
