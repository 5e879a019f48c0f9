"""
Database Setup Script
Creates the analysis tables and reports what is already stored

Usage:
    python scripts/setup_db.py           # create missing tables
    python scripts/setup_db.py --reset   # drop and recreate (development only)
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
ROOT_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT_DIR))

from src.app.config import get_config, setup_logging, validate_config
from src.app.database import db_manager
from src.app.models import Base
from src.infrastructure.repositories import AnalysisJobRepository


async def setup_database(reset: bool) -> None:
    print("\n🔌 Testing database connection...")
    await db_manager.check_connection()
    print("✅ Database connection successful")

    try:
        if reset:
            print("\n🗑️  Dropping existing tables...")
            await db_manager.drop_all_tables()

        print("\n📊 Creating database tables...")
        await db_manager.init_db()
        for table in sorted(Base.metadata.tables):
            print(f"  - {table}")

        async with db_manager.session() as session:
            stats = await AnalysisJobRepository(session).count_by_status()

        if any(stats.values()):
            print("\n📋 Existing analysis jobs:")
            for status, count in sorted(stats.items()):
                print(f"  - {status}: {count}")
    finally:
        await db_manager.dispose()


def main():
    parser = argparse.ArgumentParser(description="Create the Comment Insight database")
    parser.add_argument("--reset", action="store_true", help="drop all tables first")
    args = parser.parse_args()

    print("=" * 60)
    print("🔧 Comment Insight Pipeline - Database Setup")
    print("=" * 60)

    setup_logging()

    print("\n🔍 Validating Configuration...")
    validation = validate_config()

    for warning in validation["warnings"]:
        print(f"  ⚠️  {warning}")

    if not validation["valid"]:
        print("\n❌ Configuration validation failed:")
        for error in validation["errors"]:
            print(f"  - {error}")
        sys.exit(1)

    print(f"\n📦 Using database: {get_config().database.url}")

    try:
        asyncio.run(setup_database(args.reset))
    except Exception as e:
        print(f"\n❌ Database setup failed: {e}")
        sys.exit(1)

    print("\n" + "=" * 60)
    print("✅ Database setup complete!")
    print("=" * 60)


if __name__ == "__main__":
    main()
