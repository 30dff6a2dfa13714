#!/usr/bin/env python3
"""Initialize the database and create tables."""

import asyncio
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from app.config import get_settings
from app.storage.database import init_database


async def main():
    if not get_settings().database_url:
        print("DATABASE_URL is not set; nothing to initialize.")
        sys.exit(1)

    print("Initializing database...")
    db = await init_database()
    print("Database initialized successfully!")
    print("Tables created: licenses, mentors, students, signals")
    await db.close()


if __name__ == "__main__":
    asyncio.run(main())
