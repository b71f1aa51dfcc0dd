import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Path, status

from questboard.api.deps import current_user, get_repository, http_errors
from questboard.api.schemas import PageSourceOut, PageWrite, QuestInfoUpdate, QuestOut
from questboard.services import quest_service
from questboard.services.quest_repository import QuestRepository

router = APIRouter(prefix="/quests", tags=["quests"])

PageIndex = Annotated[int, Path(ge=0)]


@router.post("", response_model=QuestOut, status_code=status.HTTP_201_CREATED)
async def create_quest_endpoint(
    user_id: uuid.UUID = Depends(current_user),
    repository: QuestRepository = Depends(get_repository),
) -> QuestOut:
    with http_errors("create quest"):
        quest = await quest_service.create_quest(repository, user_id)
    return QuestOut.model_validate(quest)


@router.get("/{quest_id}", response_model=QuestOut)
async def get_quest_endpoint(
    quest_id: uuid.UUID,
    repository: QuestRepository = Depends(get_repository),
) -> QuestOut:
    with http_errors("get quest"):
        quest = await quest_service.get_quest_info(repository, quest_id)
    return QuestOut.model_validate(quest)


@router.put("/{quest_id}", response_model=QuestOut)
async def update_quest_endpoint(
    quest_id: uuid.UUID,
    data: QuestInfoUpdate,
    user_id: uuid.UUID = Depends(current_user),
    repository: QuestRepository = Depends(get_repository),
) -> QuestOut:
    with http_errors("update quest info"):
        quest = await quest_service.update_quest_info(
            repository, quest_id, user_id,
            title=data.title, description=data.description,
        )
    return QuestOut.model_validate(quest)


@router.get("/{quest_id}/pages/{page}", response_model=PageSourceOut)
async def get_page_endpoint(
    quest_id: uuid.UUID,
    page: PageIndex,
    user_id: uuid.UUID = Depends(current_user),
    repository: QuestRepository = Depends(get_repository),
) -> PageSourceOut:
    with http_errors("get page source"):
        record = await quest_service.get_page_source(repository, quest_id, user_id, page)
    return PageSourceOut.model_validate(record)


@router.put("/{quest_id}/pages/{page}", response_model=QuestOut)
async def write_page_endpoint(
    quest_id: uuid.UUID,
    page: PageIndex,
    data: PageWrite,
    user_id: uuid.UUID = Depends(current_user),
    repository: QuestRepository = Depends(get_repository),
) -> QuestOut:
    with http_errors("write page"):
        quest = await quest_service.write_page(
            repository, quest_id, user_id, page, data.source, data.time_limit_seconds
        )
    return QuestOut.model_validate(quest)


@router.post("/{quest_id}/publish", response_model=QuestOut)
async def publish_endpoint(
    quest_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user),
    repository: QuestRepository = Depends(get_repository),
) -> QuestOut:
    with http_errors("publish quest"):
        await quest_service.publish(repository, quest_id, user_id)
        quest = await quest_service.get_quest_info(repository, quest_id)
    return QuestOut.model_validate(quest)
