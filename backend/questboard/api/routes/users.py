import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from questboard.api.deps import (
    current_user,
    get_hasher,
    get_repository,
    get_sessions,
    http_errors,
    set_session_cookie,
)
from questboard.api.schemas import (
    AuthResponse,
    Completion,
    HistoryPageOut,
    HistoryRecordOut,
    LoginRequest,
    OwnedQuestOut,
    OwnedQuestsPageOut,
    RegisterRequest,
    UserOut,
)
from questboard.core.security import PasswordHasher
from questboard.services import auth_service
from questboard.services.auth_service import SessionStore
from questboard.services.play_service import quest_history
from questboard.services.quest_repository import QuestRepository
from questboard.services.quest_service import QuestState, list_owned_quests

router = APIRouter(prefix="/users", tags=["users"])


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register_endpoint(
    data: RegisterRequest,
    response: Response,
    repository: QuestRepository = Depends(get_repository),
    hasher: PasswordHasher = Depends(get_hasher),
    sessions: SessionStore = Depends(get_sessions),
) -> AuthResponse:
    with http_errors("register"):
        user, token = await auth_service.register(
            repository, hasher, sessions,
            name=data.name, email=data.email, password=data.password,
        )
    set_session_cookie(response, token, sessions)
    return AuthResponse(id=user.id)


@router.post("/login", response_model=AuthResponse)
async def login_endpoint(
    data: LoginRequest,
    response: Response,
    repository: QuestRepository = Depends(get_repository),
    hasher: PasswordHasher = Depends(get_hasher),
    sessions: SessionStore = Depends(get_sessions),
) -> AuthResponse:
    with http_errors("login"):
        user, token = await auth_service.login(
            repository, hasher, sessions,
            name_or_email=data.name_or_email, password=data.password,
        )
    set_session_cookie(response, token, sessions)
    return AuthResponse(id=user.id)


@router.get("/me/quests", response_model=OwnedQuestsPageOut)
async def owned_quests_endpoint(
    page: Annotated[int, Query(ge=0)] = 0,
    user_id: uuid.UUID = Depends(current_user),
    repository: QuestRepository = Depends(get_repository),
) -> OwnedQuestsPageOut:
    with http_errors("list owned quests"):
        result = await list_owned_quests(repository, user_id, page)
    return OwnedQuestsPageOut(
        data=[
            OwnedQuestOut(
                id=q.id, owner=q.owner, title=q.title, pages=q.pages,
                state=QuestState.of(q).value,
            )
            for q in result.data
        ],
        page=result.page,
        total_pages=result.total_pages,
    )


@router.get("/me/history", response_model=HistoryPageOut)
async def history_endpoint(
    page: Annotated[int, Query(ge=0)] = 0,
    user_id: uuid.UUID = Depends(current_user),
    repository: QuestRepository = Depends(get_repository),
) -> HistoryPageOut:
    with http_errors("quest history"):
        result = await quest_history(repository, user_id, page)
    return HistoryPageOut(
        data=[
            HistoryRecordOut(
                quest_id=entry.progress.quest_id,
                started_at=entry.progress.started_at,
                finished_at=entry.progress.finished_at,
                completion=Completion(
                    completed=entry.progress.completed_pages,
                    total_pages=entry.total_pages,
                ),
                rating=entry.progress.rating,
            )
            for entry in result.data
        ],
        page=result.page,
        total_pages=result.total_pages,
    )


@router.get("/{name_or_email}", response_model=UserOut)
async def get_user_endpoint(
    name_or_email: str,
    repository: QuestRepository = Depends(get_repository),
) -> UserOut:
    with http_errors("get user"):
        user = await auth_service.get_public_profile(repository, name_or_email)
    return UserOut.model_validate(user)
