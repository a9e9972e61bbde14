import asyncio
import logging

from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie

from bulletin.config import settings
from bulletin.models.employee import Employee, Role

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_EMAIL = "admin@company.com"
DEFAULT_ADMIN_PASSWORD = "admin123"


async def ensure_default_admin() -> bool:
    """Create the default admin when the directory has none; True if created"""
    from bulletin.api.routes.auth import get_password_hash

    admin_count = await Employee.find(Employee.role == Role.ADMIN).count()
    if admin_count:
        return False

    existing = await Employee.find_one(Employee.email == DEFAULT_ADMIN_EMAIL)
    if existing:
        logger.info("Admin user '%s' already exists", DEFAULT_ADMIN_EMAIL)
        return False

    admin = Employee(
        employee_id="ADMIN001",
        first_name="System",
        last_name="Admin",
        email=DEFAULT_ADMIN_EMAIL,
        password_hash=get_password_hash(DEFAULT_ADMIN_PASSWORD),
        department="Management",
        role=Role.ADMIN,
        is_active=True,
        is_verified=True,
    )
    await admin.insert()
    logger.info("Default admin created (%s)", DEFAULT_ADMIN_EMAIL)
    return True


async def create_admin():
    client = AsyncIOMotorClient(settings.MONGODB_URL)
    database = client[settings.MONGODB_DB_NAME]

    await init_beanie(
        database=database,
        document_models=[Employee]
    )

    if await ensure_default_admin():
        print(f"✅ Admin user created: {DEFAULT_ADMIN_EMAIL}")
    else:
        print("ℹ️ An admin user already exists.")
    client.close()


if __name__ == "__main__":
    asyncio.run(create_admin())
