import logging

from fastapi import FastAPI

from app.core.settings import settings
from app.db.init_db import init_db
from app.services.finance.factory import close_providers, use_test_mode
from app.utils.redis_client import close_redis_client

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("Application startup")
        if settings.auto_create_tables:
            await init_db()
        if use_test_mode(settings):
            logger.warning("Finance test mode is active; lender calls are simulated")
        elif not settings.has_lightreach_credentials:
            logger.warning("LightReach credentials are not configured; finance submissions will fail")

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Application shutdown")
        await close_providers()
        await close_redis_client()
