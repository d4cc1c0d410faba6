"""Admin key router: rotation status. Admin paths get no-cache headers from the pipeline."""

from typing import Annotated

from fastapi import APIRouter, Depends

from vaultguard.api.dependencies import get_key_manager
from vaultguard.domain.schemas.password import KeyRotationStatusResponse
from vaultguard.security.key_manager import KeyManager

router = APIRouter()


@router.get("/status", response_model=KeyRotationStatusResponse)
async def key_status(key_manager: Annotated[KeyManager, Depends(get_key_manager)]):
    status = await key_manager.rotation_status()
    await key_manager.log_key_usage("rotation_status_viewed")
    return KeyRotationStatusResponse(**status)
