"""
Quest lifecycle: authoring operations gated by ownership.

    create_quest()      → empty shell: no title/description, 0 pages, unpublished
    update_quest_info() → owner replaces title + description, nothing else
    write_page()        → owner overwrites page i < pages or appends page == pages
    publish()           → Unpublished → Published, exactly once

``pages`` is never written directly: it only grows through append_page(),
one slot at a time, so [0, pages) is always fully populated.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass, replace

from questboard.core.config import settings
from questboard.core.errors import AlreadyPublished, PageIndexTooHigh, PageNotFound, QuestNotFound
from questboard.services.auth_service import require_owner
from questboard.services.quest_repository import PageRecord, QuestRecord, QuestRepository

logger = logging.getLogger(__name__)


class QuestState(str, enum.Enum):
    unpublished = "unpublished"
    # reserved for a moderation workflow; nothing transitions into these yet
    submitted = "submitted"
    returned = "returned"
    published = "published"
    published_reviewed = "published_reviewed"
    locked = "locked"

    @classmethod
    def of(cls, quest: QuestRecord) -> "QuestState":
        return cls.published if quest.published else cls.unpublished


@dataclass(frozen=True, slots=True)
class OwnedQuestsPage:
    data: list[QuestRecord]
    page: int
    total_pages: int


async def create_quest(repository: QuestRepository, owner: uuid.UUID) -> QuestRecord:
    quest = await repository.create_quest(owner)
    logger.info("Created quest id=%s owner=%s", quest.id, owner)
    return quest


async def get_quest_info(repository: QuestRepository, quest_id: uuid.UUID) -> QuestRecord:
    quest = await repository.get_quest(quest_id)
    if quest is None:
        raise QuestNotFound()
    return quest


async def update_quest_info(
    repository: QuestRepository,
    quest_id: uuid.UUID,
    caller: uuid.UUID,
    *,
    title: str,
    description: str,
) -> QuestRecord:
    """Replace title and description; owner, pages and published stay put."""
    quest = await require_owner(repository, quest_id, caller)
    await repository.update_quest_title_desc(quest_id, title, description)
    logger.info("Updated info of quest id=%s", quest_id)
    return replace(quest, title=title, description=description)


async def write_page(
    repository: QuestRepository,
    quest_id: uuid.UUID,
    caller: uuid.UUID,
    page_index: int,
    source: str,
    time_limit_seconds: int | None = None,
) -> QuestRecord:
    """Overwrite an existing page or append the next one.

    Returns the quest as it stands after the write.
    """
    quest = await require_owner(repository, quest_id, caller)

    if page_index > quest.pages:
        raise PageIndexTooHigh()

    if page_index < quest.pages:
        await repository.upsert_page(quest_id, page_index, source, time_limit_seconds)
        logger.info("Overwrote page %d of quest id=%s", page_index, quest_id)
        return quest

    if not await repository.append_page(quest_id, page_index, source, time_limit_seconds):
        # another writer appended this slot between our read and the CAS
        logger.warning(
            "Lost append race for page %d of quest id=%s", page_index, quest_id
        )
        raise PageIndexTooHigh()

    logger.info("Appended page %d to quest id=%s", page_index, quest_id)
    return replace(quest, pages=quest.pages + 1)


async def get_page_source(
    repository: QuestRepository,
    quest_id: uuid.UUID,
    caller: uuid.UUID,
    page_index: int,
) -> PageRecord:
    """Raw page source, answer keys included, so owner-only."""
    await require_owner(repository, quest_id, caller)
    page = await repository.get_page(quest_id, page_index)
    if page is None:
        raise PageNotFound()
    return page


async def publish(repository: QuestRepository, quest_id: uuid.UUID, caller: uuid.UUID) -> None:
    quest = await require_owner(repository, quest_id, caller)
    if quest.published or not await repository.set_published(quest_id):
        raise AlreadyPublished()
    logger.info("Published quest id=%s", quest_id)


async def list_owned_quests(
    repository: QuestRepository,
    owner: uuid.UUID,
    page: int,
    page_size: int | None = None,
) -> OwnedQuestsPage:
    size = page_size or settings.page_size
    data, total_pages = await repository.list_owned_quests(owner, page, size)
    return OwnedQuestsPage(data=data, page=page, total_pages=total_pages)
