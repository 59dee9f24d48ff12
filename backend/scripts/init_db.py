#!/usr/bin/env python3
"""
Database initialization script - create all tables

    cd backend && python scripts/init_db.py
"""

import asyncio
import sys
from pathlib import Path

# backend/ on the path so the package imports without installation
backend_path = Path(__file__).parent.parent
sys.path.insert(0, str(backend_path))

from pulseledger.common.base import Base
from pulseledger.common.config import settings
from pulseledger.common.database import db_manager


async def init_database():
    print(f"🔧 Initializing database ({settings.database_type})...")

    # initialize() runs create_all after the connectivity check
    await db_manager.initialize(create_tables=True)

    print("✅ All tables created successfully!")
    print("\n📋 Tables:")
    for table in sorted(Base.metadata.tables.keys()):
        print(f"  - {table}")

    await db_manager.close()


if __name__ == "__main__":
    asyncio.run(init_database())
