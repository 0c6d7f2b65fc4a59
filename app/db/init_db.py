import asyncio
import logging

from app.db.base import Base
from app.db.session import engine
from app import models  # noqa: F401  registers tables on Base.metadata

logger = logging.getLogger(__name__)


async def init_db() -> None:
    """Create missing tables. Intended for local development only; use Alembic elsewhere."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured (%s tables)", len(Base.metadata.tables))


if __name__ == "__main__":
    asyncio.run(init_db())
