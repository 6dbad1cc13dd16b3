import logging

from fastapi import FastAPI

from app.core.settings import settings
from app.db.init_db import init_db
from app.db.session import engine
from app.services.scheduler import SyncScheduler
from app.services.sync_reconciler import SyncReconciler

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("Application startup")
        interval = await init_db()
        if not settings.sync_enabled:
            logger.info("Form source sync disabled")
            return
        scheduler = SyncScheduler(SyncReconciler().run)
        await scheduler.start(interval, initial_delay=settings.sync_initial_delay_seconds)
        app.state.sync_scheduler = scheduler

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Application shutdown")
        scheduler = getattr(app.state, "sync_scheduler", None)
        if scheduler is not None:
            await scheduler.stop()
        await engine.dispose()
