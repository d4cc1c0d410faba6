# scripts/purge_audit.py
"""Retention job: delete low-severity audit events older than AUDIT_RETENTION_DAYS."""
import sys
from pathlib import Path

# Ensure project root is on the path when running this script directly
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import asyncio

from vaultguard.api.dependencies import get_audit_logger
from vaultguard.config.logging import configure_logging
from vaultguard.config.settings import get_settings


async def purge():
    removed = await get_audit_logger().purge_expired(get_settings().audit_retention_days)
    print("Purged low-severity audit events:", removed)


configure_logging(get_settings().log_level)
asyncio.run(purge())
