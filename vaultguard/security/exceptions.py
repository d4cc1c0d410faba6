"""Security-layer exceptions. Typed, no HTTP imports."""


class SecurityError(Exception):
    """Base for all security-layer errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class SecurityAbort(SecurityError):
    """A pipeline stage terminated the request. Carries the status code to answer with."""

    status_code: int = 400

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class RateLimitExceeded(SecurityAbort):
    """Raised when a per-IP counter passed its limit or the IP is locked out. Recoverable after the window."""

    status_code = 429


class MaliciousInputDetected(SecurityAbort):
    """Raised when request input matches a threat signature. The IP is penalized."""

    status_code = 400


class OversizedOrInvalidUpload(SecurityAbort):
    """Raised when an uploaded file fails size (413) or type/content (400) validation."""

    status_code = 400


class SessionIntegrityViolation(SecurityAbort):
    """Raised when a session looks hijacked. The session is terminated; user must re-authenticate."""

    status_code = 401


class EncryptionError(SecurityError):
    """Raised when encryption fails (e.g. missing key)."""


class DecryptionError(EncryptionError):
    """Raised when ciphertext cannot be decrypted with the available keys (wrong or unknown key)."""


class ChecksumMismatch(SecurityError):
    """Raised when decrypted data does not match its envelope (tampered data). Never corrected."""


class KeyIntegrityFailure(SecurityError):
    """Raised when the active key fails its self-test. No cryptographic operation may proceed."""


class BackupOrRestoreFailure(SecurityError):
    """Raised when a key backup or restore fails. No partial artifact is left behind."""
