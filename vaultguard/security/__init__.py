"""Security: rate limiting, input sanitization, session integrity, key and secret handling. No FastAPI."""

from vaultguard.security.encryption import EncryptionService, MasterSecretCipher
from vaultguard.security.key_manager import KeyManager
from vaultguard.security.password_engine import PasswordCryptoEngine, PasswordOptions, SecretEnvelope
from vaultguard.security.rate_limiter import EndpointClass, RateLimiter
from vaultguard.security.sanitizer import InputSanitizer
from vaultguard.security.session_monitor import SessionMonitor, SessionState

__all__ = [
    "EncryptionService",
    "EndpointClass",
    "InputSanitizer",
    "KeyManager",
    "MasterSecretCipher",
    "PasswordCryptoEngine",
    "PasswordOptions",
    "RateLimiter",
    "SecretEnvelope",
    "SessionMonitor",
    "SessionState",
]
