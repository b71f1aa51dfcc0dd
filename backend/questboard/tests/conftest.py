import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from questboard.core.security import PasswordHasher
from questboard.db.session import make_engine, make_session_factory
from questboard.main import create_app
from questboard.services.auth_service import SessionStore
from questboard.services.quest_repository import (
    InMemoryQuestRepository,
    QuestRepository,
    SqlQuestRepository,
)


@pytest_asyncio.fixture(params=["memory", "sql"])
async def repository(request: pytest.FixtureRequest) -> QuestRepository:
    """Each repository-backed test runs once per storage implementation."""
    if request.param == "memory":
        yield InMemoryQuestRepository()
        return

    engine = make_engine("sqlite+aiosqlite:///:memory:")
    repo = SqlQuestRepository(make_session_factory(engine), engine)
    await repo.init()
    yield repo
    await engine.dispose()


@pytest.fixture
def sessions() -> SessionStore:
    return SessionStore(ttl_seconds=300)


@pytest.fixture
def hasher() -> PasswordHasher:
    # minimum bcrypt cost keeps the suite fast
    return PasswordHasher(rounds=4)


@pytest_asyncio.fixture
async def client(sessions: SessionStore, hasher: PasswordHasher):
    """HTTP client over an app wired to in-memory storage."""
    app = create_app(repository=InMemoryQuestRepository(), sessions=sessions, hasher=hasher)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
