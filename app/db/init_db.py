import asyncio
import logging

from app.db.session import AsyncSessionLocal
from app.services import settings as settings_service
from app.services import users

logger = logging.getLogger(__name__)


async def init_db() -> int:
    """Ensure the settings row and the admin account exist; returns the sync interval."""
    async with AsyncSessionLocal() as session:
        app_settings = await settings_service.get_app_settings(session)
        interval = app_settings.sync_interval
        await session.commit()
        admin = await users.ensure_admin_user(session)
        logger.info("Seed data ensured admin=%s sync_interval=%s", admin.username, interval)
        return interval


if __name__ == "__main__":
    asyncio.run(init_db())
