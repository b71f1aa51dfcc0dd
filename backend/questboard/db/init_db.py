import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from questboard.db.base import Base
import questboard.db.models  # noqa: F401: registers users/quests/pages/applications

logger = logging.getLogger(__name__)


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create the quest schema; tables that already exist are left alone.

    Without an engine the application engine from ``questboard.db.session``
    is used, so ``SqlQuestRepository.init`` and tests share one code path.
    """
    if engine is None:
        from questboard.db.session import engine as app_engine
        engine = app_engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Quest schema ready on %s", engine.url)
