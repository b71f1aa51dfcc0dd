import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from questboard.api.router import router
from questboard.core.config import settings
from questboard.core.logging import configure_logging
from questboard.core.security import PasswordHasher
from questboard.services.auth_service import SessionStore
from questboard.services.quest_repository import QuestRepository, get_quest_repository

configure_logging(debug=settings.debug)

logger = logging.getLogger(__name__)


def create_app(
    repository: QuestRepository | None = None,
    sessions: SessionStore | None = None,
    hasher: PasswordHasher | None = None,
) -> FastAPI:
    """Build the application; tests pass in-memory collaborators."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await app.state.repository.init()
        logger.info("questboard started (env=%s)", settings.env)
        yield

    app = FastAPI(
        title="Questboard",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.repository = repository if repository is not None else get_quest_repository()
    app.state.sessions = sessions or SessionStore(
        ttl_seconds=settings.session_ttl_seconds,
        maxsize=settings.session_cache_size,
    )
    app.state.hasher = hasher or PasswordHasher(rounds=settings.bcrypt_rounds)

    app.include_router(router)

    @app.get("/health", tags=["meta"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "env": settings.env}

    return app


app = create_app()
