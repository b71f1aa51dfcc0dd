import logging

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from questboard.core.config import settings

logger = logging.getLogger(__name__)


def make_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine; SQLite connections get foreign keys switched on."""
    eng = create_async_engine(url, echo=echo, future=True)
    if eng.dialect.name == "sqlite":
        @event.listens_for(eng.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_conn, _record) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    return eng


def make_session_factory(eng: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=eng, expire_on_commit=False, class_=AsyncSession)


engine = make_engine(settings.database_url, echo=settings.debug)

AsyncSessionLocal = make_session_factory(engine)
