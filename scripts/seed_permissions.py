"""
Seed script to populate the default catalog and role templates.

Run this script to create:
- Default resources and their access types
- The created_group, add_member and created_user role templates
- Optionally an admin user with every bit on every resource

Usage:
    uv run python -m scripts.seed_permissions [admin@example.com]
"""
import asyncio
import sys

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.roles.seed import DEFAULT_ROLES, seed
from app.features.users.auth import create_access_token
from app.utils import get_logger


log = get_logger(__name__)


async def main(admin_email=None):
    """Main function to seed resources and roles."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    async with AsyncSessionLocal() as db:
        admin = await seed(db, admin_email=admin_email)

    log.info("Permission seeding completed successfully!")
    log.info("Default roles:")
    for role_key, (name, template) in DEFAULT_ROLES.items():
        log.info(f"  - {role_key}: {name} ({len(template)} resources)")

    if admin is not None:
        log.info(f"Admin token for {admin.email}:")
        print(create_access_token(admin.id))


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else config.SEED_ADMIN_EMAIL))
