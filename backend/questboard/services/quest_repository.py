"""
Storage contract for quests, pages, users and progress records.

The core never talks to SQLAlchemy directly: services receive a
``QuestRepository`` and both implementations below satisfy the same
contract (the repository tests run against each of them).

Atomicity lives here, not in the services:
    append_page()          bumps ``quests.pages`` with a compare-and-swap on
                           the current count and inserts the page in the same
                           transaction, so a counted-but-empty page can't exist.
    set_published()        flips only an unpublished quest.
    set_finished()         stamps only an unfinished record.
    set_completed_pages()  never moves the counter backwards.
    complete_page()        advances the counter and, on the last page, stamps
                           finished_at in one conditional write; it never
                           moves the counter backwards.
"""

from __future__ import annotations

import logging
import math
import os
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from questboard.core.errors import AlreadyJoined, StorageError, UserAlreadyExists
from questboard.db.models import Quest, QuestApplication, QuestPage, User

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class UserRecord:
    id: uuid.UUID
    name: str
    email: str
    password_hash: str


@dataclass(frozen=True, slots=True)
class QuestRecord:
    id: uuid.UUID
    owner: uuid.UUID
    title: str = ""
    description: str = ""
    pages: int = 0
    published: bool = False


@dataclass(frozen=True, slots=True)
class PageRecord:
    quest_id: uuid.UUID
    page: int
    source: str
    time_limit_seconds: int | None = None


@dataclass(frozen=True, slots=True)
class ProgressRecord:
    user_id: uuid.UUID
    quest_id: uuid.UUID
    started_at: datetime
    finished_at: datetime | None = None
    completed_pages: int = 0
    rating: int | None = None
    comment: str | None = None

    @property
    def finished(self) -> bool:
        return self.finished_at is not None


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    progress: ProgressRecord
    total_pages: int


def total_pages_for(count: int, page_size: int) -> int:
    return math.ceil(count / page_size) if count else 0


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------

class QuestRepository(ABC):
    """Provider-agnostic storage interface used by every service."""

    async def init(self) -> None:
        """Prepare the backing store (create tables etc.). No-op by default."""

    # -- users ---------------------------------------------------------------
    @abstractmethod
    async def create_user(self, name: str, email: str, password_hash: str) -> UserRecord:
        """Insert a user. Raises UserAlreadyExists on a name/email clash."""

    @abstractmethod
    async def get_user(self, user_id: uuid.UUID) -> UserRecord | None: ...

    @abstractmethod
    async def find_user_by_login(self, name_or_email: str) -> UserRecord | None:
        """Look up by email when the input contains '@', by name otherwise."""

    # -- quests --------------------------------------------------------------
    @abstractmethod
    async def create_quest(self, owner: uuid.UUID) -> QuestRecord: ...

    @abstractmethod
    async def get_quest(self, quest_id: uuid.UUID) -> QuestRecord | None: ...

    @abstractmethod
    async def update_quest_title_desc(
        self, quest_id: uuid.UUID, title: str, description: str
    ) -> None: ...

    @abstractmethod
    async def increment_quest_pages(self, quest_id: uuid.UUID, expected: int) -> bool:
        """Set pages to expected + 1 iff it currently equals *expected*."""

    @abstractmethod
    async def set_published(self, quest_id: uuid.UUID) -> bool:
        """Publish an unpublished quest. Returns False if it already was."""

    @abstractmethod
    async def list_owned_quests(
        self, owner: uuid.UUID, page: int, page_size: int
    ) -> tuple[list[QuestRecord], int]:
        """Return one page of the owner's quests and the total page count."""

    # -- pages ---------------------------------------------------------------
    @abstractmethod
    async def get_page(self, quest_id: uuid.UUID, index: int) -> PageRecord | None: ...

    @abstractmethod
    async def upsert_page(
        self,
        quest_id: uuid.UUID,
        index: int,
        source: str,
        time_limit_seconds: int | None,
    ) -> None: ...

    @abstractmethod
    async def append_page(
        self,
        quest_id: uuid.UUID,
        index: int,
        source: str,
        time_limit_seconds: int | None,
    ) -> bool:
        """Atomically grow the quest from *index* to *index + 1* pages and
        store the page. Returns False (and writes nothing) when the quest's
        page count is no longer *index*."""

    # -- progress ------------------------------------------------------------
    @abstractmethod
    async def get_progress(
        self, user_id: uuid.UUID, quest_id: uuid.UUID
    ) -> ProgressRecord | None: ...

    @abstractmethod
    async def create_progress(
        self, user_id: uuid.UUID, quest_id: uuid.UUID, started_at: datetime
    ) -> ProgressRecord:
        """Insert a fresh record. Raises AlreadyJoined if one exists."""

    @abstractmethod
    async def set_completed_pages(
        self, user_id: uuid.UUID, quest_id: uuid.UUID, completed: int
    ) -> None: ...

    @abstractmethod
    async def complete_page(
        self,
        user_id: uuid.UUID,
        quest_id: uuid.UUID,
        completed: int,
        finished_at: datetime | None = None,
    ) -> bool:
        """Raise completed_pages to *completed* and, when *finished_at* is
        given, stamp it, as one write. Returns False (and writes nothing)
        when the record is already at or past *completed* or is finished."""

    @abstractmethod
    async def set_finished(
        self, user_id: uuid.UUID, quest_id: uuid.UUID, at: datetime
    ) -> bool: ...

    @abstractmethod
    async def set_rating_comment(
        self, user_id: uuid.UUID, quest_id: uuid.UUID, rating: int, comment: str
    ) -> int:
        """Store rating + comment on a finished record. Returns rows updated."""

    @abstractmethod
    async def list_progress(
        self, user_id: uuid.UUID, page: int, page_size: int
    ) -> tuple[list[HistoryEntry], int]: ...

    @abstractmethod
    async def average_rating_per_owner(self) -> list[tuple[uuid.UUID, float]]:
        """Mean rating of finished, rated records per quest owner, best first."""


# ---------------------------------------------------------------------------
# InMemoryQuestRepository: no deps, for tests and offline dev
# ---------------------------------------------------------------------------

class InMemoryQuestRepository(QuestRepository):
    """Dict-backed repository.

    No method awaits midway, so each call is atomic on a single event loop.
    """

    def __init__(self) -> None:
        self._users: dict[uuid.UUID, UserRecord] = {}
        self._quests: dict[uuid.UUID, QuestRecord] = {}
        # { (quest_id, page): PageRecord }
        self._pages: dict[tuple[uuid.UUID, int], PageRecord] = {}
        # { (user_id, quest_id): ProgressRecord }
        self._progress: dict[tuple[uuid.UUID, uuid.UUID], ProgressRecord] = {}

    # -- users ---------------------------------------------------------------
    async def create_user(self, name: str, email: str, password_hash: str) -> UserRecord:
        if any(u.name == name or u.email == email for u in self._users.values()):
            raise UserAlreadyExists()
        user = UserRecord(id=uuid.uuid4(), name=name, email=email, password_hash=password_hash)
        self._users[user.id] = user
        return user

    async def get_user(self, user_id: uuid.UUID) -> UserRecord | None:
        return self._users.get(user_id)

    async def find_user_by_login(self, name_or_email: str) -> UserRecord | None:
        field = "email" if "@" in name_or_email else "name"
        for user in self._users.values():
            if getattr(user, field) == name_or_email:
                return user
        return None

    # -- quests --------------------------------------------------------------
    async def create_quest(self, owner: uuid.UUID) -> QuestRecord:
        quest = QuestRecord(id=uuid.uuid4(), owner=owner)
        self._quests[quest.id] = quest
        return quest

    async def get_quest(self, quest_id: uuid.UUID) -> QuestRecord | None:
        return self._quests.get(quest_id)

    async def update_quest_title_desc(
        self, quest_id: uuid.UUID, title: str, description: str
    ) -> None:
        quest = self._quests[quest_id]
        self._quests[quest_id] = replace(quest, title=title, description=description)

    async def increment_quest_pages(self, quest_id: uuid.UUID, expected: int) -> bool:
        quest = self._quests.get(quest_id)
        if quest is None or quest.pages != expected:
            return False
        self._quests[quest_id] = replace(quest, pages=expected + 1)
        return True

    async def set_published(self, quest_id: uuid.UUID) -> bool:
        quest = self._quests[quest_id]
        if quest.published:
            return False
        self._quests[quest_id] = replace(quest, published=True)
        return True

    async def list_owned_quests(
        self, owner: uuid.UUID, page: int, page_size: int
    ) -> tuple[list[QuestRecord], int]:
        owned = [q for q in self._quests.values() if q.owner == owner]
        start = page * page_size
        return owned[start:start + page_size], total_pages_for(len(owned), page_size)

    # -- pages ---------------------------------------------------------------
    async def get_page(self, quest_id: uuid.UUID, index: int) -> PageRecord | None:
        return self._pages.get((quest_id, index))

    async def upsert_page(
        self,
        quest_id: uuid.UUID,
        index: int,
        source: str,
        time_limit_seconds: int | None,
    ) -> None:
        self._pages[(quest_id, index)] = PageRecord(
            quest_id=quest_id, page=index, source=source,
            time_limit_seconds=time_limit_seconds,
        )

    async def append_page(
        self,
        quest_id: uuid.UUID,
        index: int,
        source: str,
        time_limit_seconds: int | None,
    ) -> bool:
        if not await self.increment_quest_pages(quest_id, index):
            return False
        await self.upsert_page(quest_id, index, source, time_limit_seconds)
        return True

    # -- progress ------------------------------------------------------------
    async def get_progress(
        self, user_id: uuid.UUID, quest_id: uuid.UUID
    ) -> ProgressRecord | None:
        return self._progress.get((user_id, quest_id))

    async def create_progress(
        self, user_id: uuid.UUID, quest_id: uuid.UUID, started_at: datetime
    ) -> ProgressRecord:
        key = (user_id, quest_id)
        if key in self._progress:
            raise AlreadyJoined()
        record = ProgressRecord(user_id=user_id, quest_id=quest_id, started_at=started_at)
        self._progress[key] = record
        return record

    async def set_completed_pages(
        self, user_id: uuid.UUID, quest_id: uuid.UUID, completed: int
    ) -> None:
        key = (user_id, quest_id)
        record = self._progress[key]
        if completed > record.completed_pages:
            self._progress[key] = replace(record, completed_pages=completed)

    async def complete_page(
        self,
        user_id: uuid.UUID,
        quest_id: uuid.UUID,
        completed: int,
        finished_at: datetime | None = None,
    ) -> bool:
        key = (user_id, quest_id)
        record = self._progress[key]
        if record.finished_at is not None or completed <= record.completed_pages:
            return False
        self._progress[key] = replace(
            record, completed_pages=completed, finished_at=finished_at
        )
        return True

    async def set_finished(
        self, user_id: uuid.UUID, quest_id: uuid.UUID, at: datetime
    ) -> bool:
        key = (user_id, quest_id)
        record = self._progress[key]
        if record.finished_at is not None:
            return False
        self._progress[key] = replace(record, finished_at=at)
        return True

    async def set_rating_comment(
        self, user_id: uuid.UUID, quest_id: uuid.UUID, rating: int, comment: str
    ) -> int:
        key = (user_id, quest_id)
        record = self._progress.get(key)
        if record is None or record.finished_at is None:
            return 0
        self._progress[key] = replace(record, rating=rating, comment=comment)
        return 1

    async def list_progress(
        self, user_id: uuid.UUID, page: int, page_size: int
    ) -> tuple[list[HistoryEntry], int]:
        mine = sorted(
            (p for p in self._progress.values() if p.user_id == user_id),
            key=lambda p: p.started_at,
            reverse=True,
        )
        start = page * page_size
        entries = [
            HistoryEntry(progress=p, total_pages=self._quests[p.quest_id].pages)
            for p in mine[start:start + page_size]
        ]
        return entries, total_pages_for(len(mine), page_size)

    async def average_rating_per_owner(self) -> list[tuple[uuid.UUID, float]]:
        # { owner: [rating, ...] }
        ratings: dict[uuid.UUID, list[int]] = {}
        for record in self._progress.values():
            if record.finished_at is None or record.rating is None:
                continue
            owner = self._quests[record.quest_id].owner
            ratings.setdefault(owner, []).append(record.rating)
        averages = [(owner, sum(rs) / len(rs)) for owner, rs in ratings.items()]
        averages.sort(key=lambda item: item[1], reverse=True)
        return averages


# ---------------------------------------------------------------------------
# SqlQuestRepository: SQLAlchemy async, one transaction per call
# ---------------------------------------------------------------------------

def _user_record(row: User) -> UserRecord:
    return UserRecord(id=row.id, name=row.name, email=row.email, password_hash=row.password_hash)


def _quest_record(row: Quest) -> QuestRecord:
    return QuestRecord(
        id=row.id,
        owner=row.owner,
        title=row.title or "",
        description=row.description or "",
        pages=row.pages,
        published=row.published,
    )


def _progress_record(row: QuestApplication) -> ProgressRecord:
    return ProgressRecord(
        user_id=row.user_id,
        quest_id=row.quest_id,
        started_at=row.started_at,
        finished_at=row.finished_at,
        completed_pages=row.completed_pages,
        rating=row.rating,
        comment=row.comment,
    )


class SqlQuestRepository(QuestRepository):
    """Repository backed by the relational schema in ``questboard.db.models``.

    Every public method runs in its own session and transaction. SQLAlchemy
    failures are logged with context and re-raised as ``StorageError``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine

    async def init(self) -> None:
        if self._engine is not None:
            from questboard.db.init_db import init_db
            await init_db(self._engine)

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session, session.begin():
                yield session
        except SQLAlchemyError as exc:
            logger.error("storage failure during %s: %s", operation, exc, exc_info=True)
            raise StorageError() from exc

    # -- users ---------------------------------------------------------------
    async def create_user(self, name: str, email: str, password_hash: str) -> UserRecord:
        async with self._transaction("create_user") as session:
            row = User(name=name, email=email, password_hash=password_hash)
            session.add(row)
            try:
                await session.flush()
            except IntegrityError as exc:
                raise UserAlreadyExists() from exc
            return _user_record(row)

    async def get_user(self, user_id: uuid.UUID) -> UserRecord | None:
        async with self._transaction("get_user") as session:
            row = await session.get(User, user_id)
            return _user_record(row) if row else None

    async def find_user_by_login(self, name_or_email: str) -> UserRecord | None:
        column = User.email if "@" in name_or_email else User.name
        async with self._transaction("find_user_by_login") as session:
            result = await session.execute(select(User).where(column == name_or_email))
            row = result.scalar_one_or_none()
            return _user_record(row) if row else None

    # -- quests --------------------------------------------------------------
    async def create_quest(self, owner: uuid.UUID) -> QuestRecord:
        async with self._transaction("create_quest") as session:
            row = Quest(owner=owner, title="", description="", pages=0, published=False)
            session.add(row)
            await session.flush()
            return _quest_record(row)

    async def get_quest(self, quest_id: uuid.UUID) -> QuestRecord | None:
        async with self._transaction("get_quest") as session:
            row = await session.get(Quest, quest_id)
            return _quest_record(row) if row else None

    async def update_quest_title_desc(
        self, quest_id: uuid.UUID, title: str, description: str
    ) -> None:
        async with self._transaction("update_quest_title_desc") as session:
            await session.execute(
                update(Quest)
                .where(Quest.id == quest_id)
                .values(title=title, description=description)
            )

    async def increment_quest_pages(self, quest_id: uuid.UUID, expected: int) -> bool:
        async with self._transaction("increment_quest_pages") as session:
            return await self._bump_pages(session, quest_id, expected)

    @staticmethod
    async def _bump_pages(session: AsyncSession, quest_id: uuid.UUID, expected: int) -> bool:
        result = await session.execute(
            update(Quest)
            .where(Quest.id == quest_id, Quest.pages == expected)
            .values(pages=Quest.pages + 1)
        )
        return result.rowcount == 1

    async def set_published(self, quest_id: uuid.UUID) -> bool:
        async with self._transaction("set_published") as session:
            result = await session.execute(
                update(Quest)
                .where(Quest.id == quest_id, Quest.published.is_(False))
                .values(published=True)
            )
            return result.rowcount == 1

    async def list_owned_quests(
        self, owner: uuid.UUID, page: int, page_size: int
    ) -> tuple[list[QuestRecord], int]:
        async with self._transaction("list_owned_quests") as session:
            count = await session.scalar(
                select(func.count()).select_from(Quest).where(Quest.owner == owner)
            )
            result = await session.execute(
                select(Quest)
                .where(Quest.owner == owner)
                .order_by(Quest.created_at, Quest.id)
                .offset(page * page_size)
                .limit(page_size)
            )
            rows = result.scalars().all()
            return [_quest_record(r) for r in rows], total_pages_for(count or 0, page_size)

    # -- pages ---------------------------------------------------------------
    async def get_page(self, quest_id: uuid.UUID, index: int) -> PageRecord | None:
        async with self._transaction("get_page") as session:
            row = await session.get(QuestPage, (quest_id, index))
            if row is None:
                return None
            return PageRecord(
                quest_id=row.quest_id, page=row.page, source=row.source,
                time_limit_seconds=row.time_limit_seconds,
            )

    async def upsert_page(
        self,
        quest_id: uuid.UUID,
        index: int,
        source: str,
        time_limit_seconds: int | None,
    ) -> None:
        async with self._transaction("upsert_page") as session:
            await session.merge(QuestPage(
                quest_id=quest_id, page=index, source=source,
                time_limit_seconds=time_limit_seconds,
            ))

    async def append_page(
        self,
        quest_id: uuid.UUID,
        index: int,
        source: str,
        time_limit_seconds: int | None,
    ) -> bool:
        async with self._transaction("append_page") as session:
            if not await self._bump_pages(session, quest_id, index):
                return False
            await session.merge(QuestPage(
                quest_id=quest_id, page=index, source=source,
                time_limit_seconds=time_limit_seconds,
            ))
            return True

    # -- progress ------------------------------------------------------------
    async def get_progress(
        self, user_id: uuid.UUID, quest_id: uuid.UUID
    ) -> ProgressRecord | None:
        async with self._transaction("get_progress") as session:
            row = await session.get(QuestApplication, (user_id, quest_id))
            return _progress_record(row) if row else None

    async def create_progress(
        self, user_id: uuid.UUID, quest_id: uuid.UUID, started_at: datetime
    ) -> ProgressRecord:
        async with self._transaction("create_progress") as session:
            if await session.get(QuestApplication, (user_id, quest_id)) is not None:
                raise AlreadyJoined()
            row = QuestApplication(
                user_id=user_id, quest_id=quest_id,
                started_at=started_at, finished_at=None,
                completed_pages=0, rating=None, comment=None,
            )
            session.add(row)
            try:
                await session.flush()
            except IntegrityError as exc:
                raise AlreadyJoined() from exc
            return _progress_record(row)

    async def set_completed_pages(
        self, user_id: uuid.UUID, quest_id: uuid.UUID, completed: int
    ) -> None:
        async with self._transaction("set_completed_pages") as session:
            await session.execute(
                update(QuestApplication)
                .where(
                    QuestApplication.user_id == user_id,
                    QuestApplication.quest_id == quest_id,
                    QuestApplication.completed_pages < completed,
                )
                .values(completed_pages=completed)
            )

    async def complete_page(
        self,
        user_id: uuid.UUID,
        quest_id: uuid.UUID,
        completed: int,
        finished_at: datetime | None = None,
    ) -> bool:
        values: dict[str, object] = {"completed_pages": completed}
        if finished_at is not None:
            values["finished_at"] = finished_at
        async with self._transaction("complete_page") as session:
            result = await session.execute(
                update(QuestApplication)
                .where(
                    QuestApplication.user_id == user_id,
                    QuestApplication.quest_id == quest_id,
                    QuestApplication.completed_pages < completed,
                    QuestApplication.finished_at.is_(None),
                )
                .values(**values)
            )
            return result.rowcount == 1

    async def set_finished(
        self, user_id: uuid.UUID, quest_id: uuid.UUID, at: datetime
    ) -> bool:
        async with self._transaction("set_finished") as session:
            result = await session.execute(
                update(QuestApplication)
                .where(
                    QuestApplication.user_id == user_id,
                    QuestApplication.quest_id == quest_id,
                    QuestApplication.finished_at.is_(None),
                )
                .values(finished_at=at)
            )
            return result.rowcount == 1

    async def set_rating_comment(
        self, user_id: uuid.UUID, quest_id: uuid.UUID, rating: int, comment: str
    ) -> int:
        async with self._transaction("set_rating_comment") as session:
            result = await session.execute(
                update(QuestApplication)
                .where(
                    QuestApplication.user_id == user_id,
                    QuestApplication.quest_id == quest_id,
                    QuestApplication.finished_at.is_not(None),
                )
                .values(rating=rating, comment=comment)
            )
            return result.rowcount

    async def list_progress(
        self, user_id: uuid.UUID, page: int, page_size: int
    ) -> tuple[list[HistoryEntry], int]:
        async with self._transaction("list_progress") as session:
            count = await session.scalar(
                select(func.count())
                .select_from(QuestApplication)
                .where(QuestApplication.user_id == user_id)
            )
            result = await session.execute(
                select(QuestApplication, Quest.pages)
                .join(Quest, Quest.id == QuestApplication.quest_id)
                .where(QuestApplication.user_id == user_id)
                .order_by(QuestApplication.started_at.desc())
                .offset(page * page_size)
                .limit(page_size)
            )
            entries = [
                HistoryEntry(progress=_progress_record(row), total_pages=pages)
                for row, pages in result.all()
            ]
            return entries, total_pages_for(count or 0, page_size)

    async def average_rating_per_owner(self) -> list[tuple[uuid.UUID, float]]:
        mean = func.avg(QuestApplication.rating)
        async with self._transaction("average_rating_per_owner") as session:
            result = await session.execute(
                select(Quest.owner, mean)
                .join(Quest, Quest.id == QuestApplication.quest_id)
                .where(
                    QuestApplication.finished_at.is_not(None),
                    QuestApplication.rating.is_not(None),
                )
                .group_by(Quest.owner)
                .order_by(mean.desc())
            )
            return [(owner, float(avg)) for owner, avg in result.all()]


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def get_quest_repository() -> QuestRepository:
    """Return the repository selected by settings / env.

    REPOSITORY_BACKEND controls which backend is used:
        "sql"    → SqlQuestRepository over settings.database_url (default)
        "memory" → InMemoryQuestRepository (no persistence)
    """
    from questboard.core.config import settings

    backend = os.environ.get("REPOSITORY_BACKEND", settings.repository_backend).lower()

    if backend == "memory":
        logger.info("Using InMemoryQuestRepository")
        return InMemoryQuestRepository()

    from questboard.db.session import AsyncSessionLocal, engine

    logger.info("Using SqlQuestRepository (%s)", engine.url)
    return SqlQuestRepository(AsyncSessionLocal, engine)
