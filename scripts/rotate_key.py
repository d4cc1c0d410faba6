# scripts/rotate_key.py
"""Operator-triggered key rotation. Prints the new key once; store it as ENCRYPTION_KEY."""
import sys
from pathlib import Path

# Ensure project root is on the path when running this script directly
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import asyncio

from vaultguard.api.dependencies import get_key_manager
from vaultguard.config.logging import configure_logging
from vaultguard.config.settings import get_settings


async def rotate(force: bool):
    key_manager = get_key_manager()
    if not force and not await key_manager.needs_rotation():
        status = await key_manager.rotation_status()
        print("Rotation not due; next rotation:", status["next_rotation_due"])
        return
    new_key = key_manager.generate_key()
    version = await key_manager.rotate(new_key)
    print(f"Rotated to key version {version}")
    print(f"ENCRYPTION_KEY={new_key}")
    print(f"KEY_VERSION={version}")


configure_logging(get_settings().log_level)
asyncio.run(rotate(force="--force" in sys.argv))
