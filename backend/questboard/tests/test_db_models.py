import uuid
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.db.base import Base
from questboard.db.models import Quest, QuestApplication, QuestPage, User
from questboard.db.session import make_engine, make_session_factory


@pytest_asyncio.fixture
async def session():
    """In-memory SQLite session with foreign keys enforced, isolated per test."""
    engine = make_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = make_session_factory(engine)
    async with factory() as s:
        yield s

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


async def _user(session: AsyncSession, name: str = "alice") -> User:
    user = User(name=name, email=f"{name}@example.org", password_hash="digest")
    session.add(user)
    await session.flush()
    return user


@pytest.mark.asyncio
async def test_create_quest_defaults(session: AsyncSession) -> None:
    user = await _user(session)
    quest = Quest(owner=user.id)
    session.add(quest)
    await session.commit()
    await session.refresh(quest)

    assert isinstance(quest.id, uuid.UUID)
    assert (quest.title, quest.description, quest.pages, quest.published) == ("", "", 0, False)
    assert quest.created_at is not None

    second = Quest(owner=user.id)
    session.add(second)
    await session.commit()
    await session.refresh(second)
    assert second.created_at > quest.created_at


@pytest.mark.asyncio
async def test_pages_keyed_by_quest_and_index(session: AsyncSession) -> None:
    user = await _user(session)
    quest = Quest(owner=user.id, pages=2)
    session.add(quest)
    await session.flush()

    session.add_all([
        QuestPage(quest_id=quest.id, page=0, source="Hello"),
        QuestPage(quest_id=quest.id, page=1, source="World", time_limit_seconds=20),
    ])
    await session.commit()

    page = await session.get(QuestPage, (quest.id, 1))
    assert page.source == "World"
    assert page.time_limit_seconds == 20


@pytest.mark.asyncio
async def test_user_name_is_unique(session: AsyncSession) -> None:
    await _user(session)
    session.add(User(name="alice", email="other@example.org", password_hash="digest"))

    with pytest.raises(IntegrityError):
        await session.flush()


@pytest.mark.asyncio
async def test_application_requires_existing_quest(session: AsyncSession) -> None:
    user = await _user(session)
    session.add(QuestApplication(
        user_id=user.id,
        quest_id=uuid.uuid4(),
        started_at=datetime.now(timezone.utc),
        completed_pages=0,
    ))

    with pytest.raises(IntegrityError):
        await session.flush()


@pytest.mark.asyncio
async def test_cascade_delete_quest_pages(session: AsyncSession) -> None:
    user = await _user(session)
    quest = Quest(owner=user.id, pages=1)
    session.add(quest)
    await session.flush()
    session.add(QuestPage(quest_id=quest.id, page=0, source="temp"))
    await session.flush()

    await session.delete(quest)
    await session.commit()

    assert await session.get(QuestPage, (quest.id, 0)) is None
