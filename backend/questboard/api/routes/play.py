import json
import logging
import uuid

from fastapi import APIRouter, Depends, WebSocket, status
from starlette.websockets import WebSocketDisconnect

from questboard.api.deps import (
    current_user,
    get_repository,
    get_sessions,
    http_errors,
    session_token,
)
from questboard.api.schemas import ErrorMessage, OwnerRatingOut, ProgressOut, RatingRequest
from questboard.core.errors import QuestError
from questboard.services import play_service
from questboard.services.auth_service import SessionStore, resolve_user
from questboard.services.play_service import PlaySession, SessionTerminated
from questboard.services.quest_repository import QuestRepository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["play"])

# Close codes in the 4000-4999 range are application defined; a rejected
# channel closes with 4000 + the HTTP status of the failed precondition.
_APP_CLOSE_BASE = 4000


@router.post(
    "/quests/{quest_id}/join",
    response_model=ProgressOut,
    status_code=status.HTTP_201_CREATED,
)
async def join_endpoint(
    quest_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user),
    repository: QuestRepository = Depends(get_repository),
) -> ProgressOut:
    with http_errors("join quest"):
        record = await play_service.join(repository, quest_id, user_id)
    return ProgressOut.model_validate(record)


@router.put("/quests/{quest_id}/rating", status_code=status.HTTP_204_NO_CONTENT)
async def rating_endpoint(
    quest_id: uuid.UUID,
    data: RatingRequest,
    user_id: uuid.UUID = Depends(current_user),
    repository: QuestRepository = Depends(get_repository),
) -> None:
    with http_errors("rate quest"):
        await play_service.update_rating_comment(
            repository, quest_id, user_id, rating=data.rating, comment=data.comment
        )


@router.get("/ratings/owners", response_model=list[OwnerRatingOut])
async def owner_ratings_endpoint(
    repository: QuestRepository = Depends(get_repository),
) -> list[OwnerRatingOut]:
    with http_errors("owner ratings"):
        rows = await play_service.average_ratings(repository)
    return [OwnerRatingOut(owner=owner, average_rating=avg) for owner, avg in rows]


async def _reject(websocket: WebSocket, exc: QuestError) -> None:
    error = ErrorMessage(code=exc.code, detail=exc.detail)
    await websocket.send_json(error.model_dump(mode="json"))
    await websocket.close(code=_APP_CLOSE_BASE + exc.status_code, reason=exc.detail)


@router.websocket("/quests/{quest_id}/play")
async def play_endpoint(
    websocket: WebSocket,
    quest_id: uuid.UUID,
    repository: QuestRepository = Depends(get_repository),
    sessions: SessionStore = Depends(get_sessions),
) -> None:
    """Gameplay channel: one JSON reply for every JSON request."""
    await websocket.accept()
    try:
        user_id = resolve_user(session_token(websocket), sessions)
        await play_service.require_playable(repository, quest_id, user_id)
    except QuestError as exc:
        await _reject(websocket, exc)
        return

    session = PlaySession(repository, quest_id, user_id)
    logger.info("play channel opened user=%s quest=%s", user_id, quest_id)

    while True:
        try:
            event = await websocket.receive()
        except WebSocketDisconnect:
            break
        if event["type"] == "websocket.disconnect":
            break

        text = event.get("text")
        if text is None:
            await websocket.close(code=status.WS_1003_UNSUPPORTED_DATA, reason="text frames only")
            break

        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="invalid json")
            break

        try:
            reply = await session.handle(payload)
        except SessionTerminated as exc:
            logger.info("play channel user=%s quest=%s terminated: %s", user_id, quest_id, exc.reason)
            await websocket.close(code=exc.close_code, reason=exc.reason)
            break
        except QuestError as exc:
            logger.error("play channel user=%s quest=%s failed: %s", user_id, quest_id, exc)
            error = ErrorMessage(code=exc.code, detail=exc.detail)
            await websocket.send_json(error.model_dump(mode="json"))
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
            break

        await websocket.send_json(reply.model_dump(mode="json"))

    logger.info("play channel closed user=%s quest=%s", user_id, quest_id)
