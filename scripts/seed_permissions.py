"""
Seed script to synchronize the permission catalog.

Run this script after database initialization (or let the API startup do
it) to make the ``permissions`` table match the static catalog. Existing
grants are never touched.

Usage:
    uv run python -m scripts.seed_permissions
"""
import asyncio

from app.core.database.engine import get_db, init_db
from app.features.permissions.catalog import CATEGORIES, PERMISSION_CATALOG
from app.features.permissions.service import sync_permission_catalog
from app.utils import get_logger


log = get_logger(__name__)


async def main():
    """Create tables, then insert any catalog permission missing from the database."""
    log.info("Starting permission seeding...")

    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        try:
            added = await sync_permission_catalog(db)
            await db.commit()

            log.info("Permission seeding completed successfully! (%d added)", added)
            for key, label in CATEGORIES.items():
                names = [p.name for p in PERMISSION_CATALOG if p.category == key]
                log.info(f"  - {label}: {', '.join(names)}")

        except Exception as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
