"""PasswordCryptoEngine: envelopes, tamper detection, scoring and generation."""

import base64
import dataclasses
import json

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from vaultguard.audit.logger import AuditLogger
from vaultguard.audit.repository import InMemoryAuditRepository
from vaultguard.scalability.store import InMemorySharedStore
from vaultguard.security.exceptions import ChecksumMismatch, DecryptionError, KeyIntegrityFailure
from vaultguard.security.key_manager import KeyManager
from vaultguard.security.sanitizer import match_threat
from vaultguard.security.password_engine import (
    AMBIGUOUS,
    DIGITS,
    LOWERCASE,
    SYMBOLS,
    UPPERCASE,
    PasswordCryptoEngine,
    PasswordOptions,
    SecretEnvelope,
    checksum,
)


def _engine(active_key: str | None = None) -> tuple[PasswordCryptoEngine, InMemoryAuditRepository]:
    repository = InMemoryAuditRepository()
    audit = AuditLogger(repository)
    manager = KeyManager(InMemorySharedStore(), audit, active_key=active_key or KeyManager.generate_key())
    return PasswordCryptoEngine(manager, audit), repository


@pytest.fixture
def engine():
    return _engine()[0]


# --- Envelopes ---


@pytest.mark.asyncio
@settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(plaintext=st.text(max_size=128))
async def test_encrypt_decrypt_round_trip(plaintext):
    engine, _ = _engine()
    envelope = await engine.encrypt(plaintext)
    assert await engine.decrypt(envelope) == plaintext


@pytest.mark.asyncio
async def test_envelope_shape(engine):
    envelope = await engine.encrypt("s3cret!", {"entry_id": 7})
    data = envelope.to_dict()
    assert data["encryption_method"] == "AES-256-GCM"
    assert data["key_version"] == 1
    assert data["checksum"] == checksum("s3cret!")
    assert data["metadata"] == {"entry_id": 7}
    assert "s3cret!" not in data["encrypted_data"]
    assert await engine.decrypt(data) == "s3cret!"


@pytest.mark.asyncio
async def test_tampered_ciphertext_raises_checksum_mismatch():
    engine, repository = _engine()
    envelope = await engine.encrypt("do not touch")
    raw = bytearray(base64.b64decode(envelope.ciphertext))
    raw[-1] ^= 0x01
    tampered = dataclasses.replace(envelope, ciphertext=base64.b64encode(bytes(raw)).decode())

    with pytest.raises(ChecksumMismatch):
        await engine.decrypt(tampered)
    assert repository.events[-1].action == "password_decryption_failed"


@pytest.mark.asyncio
async def test_tampered_checksum_raises_checksum_mismatch(engine):
    envelope = await engine.encrypt("do not touch")
    tampered = dataclasses.replace(envelope, checksum=checksum("something else"))
    with pytest.raises(ChecksumMismatch):
        await engine.decrypt(tampered)


@pytest.mark.asyncio
async def test_unknown_key_version_raises_decryption_error(engine):
    envelope = await engine.encrypt("value")
    with pytest.raises(DecryptionError):
        await engine.decrypt(dataclasses.replace(envelope, key_version=7))


@pytest.mark.asyncio
async def test_unsupported_method_raises_decryption_error(engine):
    envelope = await engine.encrypt("value")
    with pytest.raises(DecryptionError):
        await engine.decrypt(dataclasses.replace(envelope, method="AES-256-CBC"))


@pytest.mark.asyncio
async def test_envelope_from_other_key_is_not_decryptable():
    first, _ = _engine()
    second, _ = _engine()
    envelope = await first.encrypt("value")
    with pytest.raises(ChecksumMismatch):
        await second.decrypt(envelope)


@pytest.mark.asyncio
async def test_encrypt_without_key_fails_integrity():
    repository = InMemoryAuditRepository()
    audit = AuditLogger(repository)
    engine = PasswordCryptoEngine(KeyManager(InMemorySharedStore(), audit, active_key=None), audit)
    with pytest.raises(KeyIntegrityFailure):
        await engine.encrypt("value")
    assert repository.actions()[-1] == "password_encryption_failed"


@pytest.mark.asyncio
async def test_bytearray_plaintext_is_wiped(engine):
    plaintext = bytearray("wipe me".encode())
    envelope = await engine.encrypt(plaintext)
    assert plaintext == bytearray()
    assert await engine.decrypt(envelope) == "wipe me"


def test_envelope_from_dict_defaults():
    envelope = SecretEnvelope.from_dict(
        {"encrypted_data": "abc", "key_version": "2", "checksum": "00"}
    )
    assert envelope.key_version == 2
    assert envelope.method == "AES-256-GCM"
    assert envelope.metadata == {}


# --- Strength ---


@given(password=st.text(max_size=200))
def test_score_always_in_range(password):
    assert 1 <= PasswordCryptoEngine.score(password) <= 5


@pytest.mark.parametrize(
    "password, expected",
    [
        ("", 1),
        ("aaa", 1),
        ("password", 1),
        ("Tr0ub4dor&3xyzQ!", 5),
    ],
)
def test_score_examples(password, expected):
    assert PasswordCryptoEngine.score(password) == expected


def test_describe():
    assert PasswordCryptoEngine.describe(1) == "Very Weak"
    assert PasswordCryptoEngine.describe(3) == "Fair"
    assert PasswordCryptoEngine.describe(5) == "Very Strong"


def test_is_compromised_case_insensitive():
    assert PasswordCryptoEngine.is_compromised("PassWord") is True
    assert PasswordCryptoEngine.is_compromised("Tr0ub4dor&3xyzQ!") is False


def test_validate_reports_policy_violations(engine):
    errors = engine.validate("short")
    assert "Password must be at least 8 characters long" in errors
    assert "Password must contain at least one number" in errors
    assert engine.validate("Tr0ub4dor&3xyzQ!") == []


# --- Generation ---


def test_generate_covers_every_class(engine):
    for _ in range(50):
        password = engine.generate()
        assert len(password) == 16
        assert any(c in LOWERCASE for c in password)
        assert any(c in UPPERCASE for c in password)
        assert any(c in DIGITS for c in password)
        assert any(c in SYMBOLS for c in password)
        assert not set(password) & AMBIGUOUS


def test_generate_minimum_length_still_covers_classes(engine):
    for _ in range(50):
        password = engine.generate(length=4)
        assert {
            any(c in alphabet for c in password)
            for alphabet in (LOWERCASE, UPPERCASE, DIGITS, SYMBOLS)
        } == {True}


def test_generate_rejects_length_below_class_count(engine):
    with pytest.raises(ValueError):
        engine.generate(PasswordOptions(length=3))


def test_generated_passwords_pass_input_scanner(engine):
    for _ in range(2000):
        password = engine.generate(length=24)
        assert match_threat(json.dumps({"password": password})) is None


def test_generate_redraws_scanner_matches(engine, monkeypatch):
    draws = iter(["Ab1${x}Ab1${x}Ab", "Ab1!Cd2@Ef3#Gh4%"])
    monkeypatch.setattr(engine, "_draw", lambda length, classes: next(draws))
    assert engine.generate() == "Ab1!Cd2@Ef3#Gh4%"


def test_generate_single_class(engine):
    password = engine.generate(
        length=20, uppercase=False, lowercase=False, symbols=False, exclude_ambiguous=False
    )
    assert len(password) == 20
    assert password.isdigit()


def test_generate_with_no_classes_uses_fallback_pool(engine):
    password = engine.generate(
        length=12, uppercase=False, lowercase=False, numbers=False, symbols=False
    )
    assert len(password) == 12
    assert all(c in LOWERCASE + DIGITS for c in password)


def test_suggestions(engine):
    suggestions = engine.suggestions(3)
    assert len(suggestions) == 3
    for suggestion in suggestions:
        assert 12 <= len(suggestion["password"]) <= 20
        assert suggestion["description"] == engine.describe(suggestion["strength"])


@pytest.mark.asyncio
async def test_log_event_severity():
    engine, repository = _engine()
    await engine.log_event("compromised_password_detected", {"strength": 1})
    assert repository.events[-1].severity.value == "high"
