"""Password API router: strength check, generation, suggestions. Requests pass the security pipeline first."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from vaultguard.api.dependencies import get_password_engine
from vaultguard.domain.schemas.password import (
    GeneratedPasswordResponse,
    PasswordCheckRequest,
    PasswordStrengthResponse,
)
from vaultguard.security.password_engine import PasswordCryptoEngine

router = APIRouter()


@router.post("/strength", response_model=PasswordStrengthResponse)
async def check_strength(
    body: PasswordCheckRequest,
    engine: Annotated[PasswordCryptoEngine, Depends(get_password_engine)],
):
    strength = engine.score(body.password)
    compromised = engine.is_compromised(body.password)
    issues = engine.validate(body.password)
    await engine.log_event(
        "password_strength_checked", {"strength": strength, "compromised": compromised}
    )
    if compromised:
        await engine.log_event("compromised_password_detected", {"strength": strength})
    elif issues:
        await engine.log_event("weak_password_detected", {"strength": strength})
    return PasswordStrengthResponse(
        strength=strength,
        description=engine.describe(strength),
        compromised=compromised,
        issues=issues,
    )


@router.get("/generate", response_model=GeneratedPasswordResponse)
async def generate_password(
    engine: Annotated[PasswordCryptoEngine, Depends(get_password_engine)],
    length: Annotated[int, Query(ge=4, le=128)] = 16,
    uppercase: bool = True,
    lowercase: bool = True,
    numbers: bool = True,
    symbols: bool = True,
    exclude_ambiguous: bool = True,
):
    try:
        password = engine.generate(
            length=length,
            uppercase=uppercase,
            lowercase=lowercase,
            numbers=numbers,
            symbols=symbols,
            exclude_ambiguous=exclude_ambiguous,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    strength = engine.score(password)
    await engine.log_event("password_generated", {"length": length, "strength": strength})
    return GeneratedPasswordResponse(
        password=password, strength=strength, description=engine.describe(strength)
    )


@router.get("/suggestions", response_model=list[GeneratedPasswordResponse])
async def password_suggestions(
    engine: Annotated[PasswordCryptoEngine, Depends(get_password_engine)],
    count: Annotated[int, Query(ge=1, le=10)] = 3,
):
    return [GeneratedPasswordResponse(**s) for s in engine.suggestions(count)]
