# scripts/init_audit_db.py
import sys
from pathlib import Path

# Ensure project root is on the path when running this script directly
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import asyncio

from sqlalchemy import text

from vaultguard.config.settings import get_settings
from vaultguard.infrastructure.database import models  # noqa: F401  registers audit_events
from vaultguard.infrastructure.database.session import create_engine, create_tables


async def init():
    engine = create_engine(get_settings().database_url)
    async with engine.begin() as conn:
        result = await conn.execute(text("SELECT 1"))
        print("DB Connected:", result.scalar())
    await create_tables(engine)
    print("audit_events table ready")
    await engine.dispose()


asyncio.run(init())
