"""
Play-session progression: per (user, quest) progress through the pages.

Progress lifecycle:
    join()             → NotJoined → InProgress, completed_pages = 0
    request_page(p)    → serves page p only when p == completed_pages,
                         otherwise redirects the player to completed_pages
    submit_answers(p)  → grades every answer on page p; when all are
                         correct completed_pages becomes p + 1, and on the
                         last page finished_at is stamped (→ Finished)

The gameplay channel is a strict request-then-single-response loop driven
by ``PlaySession.handle``; the transport (WebSocket route) only moves JSON.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import status
from pydantic import TypeAdapter, ValidationError

from questboard.api.schemas import (
    ClientMessage,
    ErrorMessage,
    PageMessage,
    RedirectMessage,
    RequestPageMessage,
    ServerMessage,
    SubmitResultMessage,
)
from questboard.core.config import settings
from questboard.core.errors import (
    AlreadyFinished,
    InternalError,
    InvalidInput,
    NotFinished,
    NotJoined,
    PageNotFound,
    QuestError,
    QuestNotFound,
)
from questboard.services.auth_service import require_published
from questboard.services.page_parser import PageParseError, parse_page
from questboard.services.quest_repository import (
    HistoryEntry,
    ProgressRecord,
    QuestRecord,
    QuestRepository,
)
from questboard.services.questions import (
    Answer,
    AskQuestionElement,
    TextElement,
    WrongQuestionType,
    ask_page,
    check_answer,
    questions_of,
)

logger = logging.getLogger(__name__)

_client_message = TypeAdapter(ClientMessage)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class PageOutcome:
    page: int
    elements: list[TextElement | AskQuestionElement]
    time_limit_seconds: int | None = None


@dataclass(frozen=True, slots=True)
class RedirectOutcome:
    """Requested page is not the one the player must play next."""

    next_page: int


@dataclass(frozen=True, slots=True)
class SubmitOutcome:
    page: int
    results: list[bool]
    accepted: bool
    next_page: int
    finished: bool


@dataclass(frozen=True, slots=True)
class HistoryPage:
    data: list[HistoryEntry]
    page: int
    total_pages: int


class PageOutOfRange(Exception):
    """Requested page index does not exist in the quest at all."""

    def __init__(self, page: int, pages: int) -> None:
        self.page = page
        self.pages = pages
        super().__init__(f"page {page} requested but quest has {pages} pages")


# ---------------------------------------------------------------------------
# Joining / status
# ---------------------------------------------------------------------------

async def join(
    repository: QuestRepository,
    quest_id: uuid.UUID,
    caller: uuid.UUID,
) -> ProgressRecord:
    await require_published(repository, quest_id)
    record = await repository.create_progress(caller, quest_id, _now())
    logger.info("user=%s joined quest=%s", caller, quest_id)
    return record


async def is_finished(
    repository: QuestRepository,
    user_id: uuid.UUID,
    quest_id: uuid.UUID,
) -> bool | None:
    """True/False for a joined player, None when no progress record exists."""
    record = await repository.get_progress(user_id, quest_id)
    if record is None:
        return None
    return record.finished


async def _in_progress(
    repository: QuestRepository,
    user_id: uuid.UUID,
    quest_id: uuid.UUID,
) -> ProgressRecord:
    record = await repository.get_progress(user_id, quest_id)
    if record is None:
        raise NotJoined()
    if record.finished:
        raise AlreadyFinished()
    return record


async def require_playable(
    repository: QuestRepository,
    quest_id: uuid.UUID,
    user_id: uuid.UUID,
) -> QuestRecord:
    """Preconditions for opening a gameplay channel."""
    quest = await require_published(repository, quest_id)
    await _in_progress(repository, user_id, quest_id)
    return quest


# ---------------------------------------------------------------------------
# Page request / answer submission
# ---------------------------------------------------------------------------

async def _parsed_page(repository: QuestRepository, quest_id: uuid.UUID, page_index: int):
    page = await repository.get_page(quest_id, page_index)
    if page is None:
        raise PageNotFound()
    return page, parse_page(page.source)


async def request_page(
    repository: QuestRepository,
    quest: QuestRecord,
    user_id: uuid.UUID,
    page_index: int,
) -> PageOutcome | RedirectOutcome:
    if page_index >= quest.pages:
        raise PageOutOfRange(page_index, quest.pages)

    progress = await _in_progress(repository, user_id, quest.id)
    if page_index != progress.completed_pages:
        return RedirectOutcome(next_page=progress.completed_pages)

    page, elements = await _parsed_page(repository, quest.id, page_index)
    return PageOutcome(
        page=page_index,
        elements=ask_page(elements),
        time_limit_seconds=page.time_limit_seconds,
    )


async def submit_answers(
    repository: QuestRepository,
    quest: QuestRecord,
    user_id: uuid.UUID,
    page_index: int,
    answers: list[Answer],
) -> SubmitOutcome | RedirectOutcome:
    """Grade *answers* (one per question, in page order) for *page_index*.

    The page is accepted only if every answer is correct; acceptance moves
    completed_pages past it and finishes the quest on its last page.
    """
    if page_index >= quest.pages:
        raise PageOutOfRange(page_index, quest.pages)

    progress = await _in_progress(repository, user_id, quest.id)
    if page_index != progress.completed_pages:
        return RedirectOutcome(next_page=progress.completed_pages)

    _, elements = await _parsed_page(repository, quest.id, page_index)
    questions = questions_of(elements)
    if len(answers) != len(questions):
        raise InvalidInput(
            f"page {page_index} has {len(questions)} questions, got {len(answers)} answers"
        )

    results = [check_answer(q, a) for q, a in zip(questions, answers)]
    accepted = all(results)
    finished = False

    if accepted:
        last = page_index + 1 == quest.pages
        advanced = await repository.complete_page(
            user_id, quest.id, page_index + 1, finished_at=_now() if last else None
        )
        if not advanced:
            # a concurrent submission for the same page got there first
            return RedirectOutcome(
                next_page=(await _in_progress(repository, user_id, quest.id)).completed_pages
            )
        logger.info("user=%s completed page %d of quest=%s", user_id, page_index, quest.id)
        if last:
            logger.info("user=%s finished quest=%s", user_id, quest.id)
            finished = True

    return SubmitOutcome(
        page=page_index,
        results=results,
        accepted=accepted,
        next_page=page_index + 1 if accepted else page_index,
        finished=finished,
    )


async def finish_quest(
    repository: QuestRepository,
    user_id: uuid.UUID,
    quest_id: uuid.UUID,
) -> datetime:
    at = _now()
    if not await repository.set_finished(user_id, quest_id, at):
        raise AlreadyFinished()
    logger.info("user=%s finished quest=%s", user_id, quest_id)
    return at


# ---------------------------------------------------------------------------
# Ratings / history
# ---------------------------------------------------------------------------

async def update_rating_comment(
    repository: QuestRepository,
    quest_id: uuid.UUID,
    caller: uuid.UUID,
    *,
    rating: int,
    comment: str,
) -> None:
    await require_published(repository, quest_id)

    record = await repository.get_progress(caller, quest_id)
    if record is None:
        raise NotJoined()
    if not record.finished:
        raise NotFinished()

    updated = await repository.set_rating_comment(caller, quest_id, rating, comment)
    if updated != 1:
        logger.error(
            "rating update touched %d rows for user=%s quest=%s", updated, caller, quest_id
        )
        raise InternalError()
    logger.info("user=%s rated quest=%s with %d", caller, quest_id, rating)


async def average_ratings(repository: QuestRepository) -> list[tuple[uuid.UUID, float]]:
    return await repository.average_rating_per_owner()


async def quest_history(
    repository: QuestRepository,
    user_id: uuid.UUID,
    page: int,
    page_size: int | None = None,
) -> HistoryPage:
    size = page_size or settings.page_size
    data, total_pages = await repository.list_progress(user_id, page, size)
    return HistoryPage(data=data, page=page, total_pages=total_pages)


# ---------------------------------------------------------------------------
# Gameplay channel state machine
# ---------------------------------------------------------------------------

class SessionTerminated(Exception):
    """The channel must close; *close_code* is a WebSocket close code."""

    def __init__(self, reason: str, close_code: int = status.WS_1008_POLICY_VIOLATION) -> None:
        self.reason = reason
        self.close_code = close_code
        super().__init__(reason)


class PlaySession:
    """One player's gameplay channel for one quest.

    ``handle`` consumes exactly one client message and returns exactly one
    server message, or raises SessionTerminated.
    """

    def __init__(self, repository: QuestRepository, quest_id: uuid.UUID, user_id: uuid.UUID) -> None:
        self.repository = repository
        self.quest_id = quest_id
        self.user_id = user_id

    async def handle(self, payload: Any) -> ServerMessage:
        try:
            message = _client_message.validate_python(payload)
        except ValidationError as exc:
            raise SessionTerminated("unparseable message") from exc

        # authors may append pages after publishing
        quest = await self.repository.get_quest(self.quest_id)
        if quest is None:
            raise QuestNotFound()

        try:
            if isinstance(message, RequestPageMessage):
                outcome = await request_page(self.repository, quest, self.user_id, message.page)
            else:
                outcome = await submit_answers(
                    self.repository, quest, self.user_id, message.page, message.answers
                )
        except PageOutOfRange as exc:
            raise SessionTerminated(str(exc)) from exc
        except PageParseError as exc:
            logger.warning(
                "quest=%s page %d does not parse: %s", quest.id, message.page, exc
            )
            return ErrorMessage(code=exc.kind.value, detail=str(exc))
        except WrongQuestionType as exc:
            return ErrorMessage(code="wrong_question_type", detail=str(exc))
        except InternalError:
            raise
        except QuestError as exc:
            return ErrorMessage(code=exc.code, detail=exc.detail)

        return _to_message(outcome)


def _to_message(outcome: PageOutcome | RedirectOutcome | SubmitOutcome) -> ServerMessage:
    if isinstance(outcome, RedirectOutcome):
        return RedirectMessage(page=outcome.next_page)
    if isinstance(outcome, PageOutcome):
        return PageMessage(
            page=outcome.page,
            elements=outcome.elements,
            time_limit_seconds=outcome.time_limit_seconds,
        )
    return SubmitResultMessage(
        page=outcome.page,
        results=outcome.results,
        accepted=outcome.accepted,
        next_page=outcome.next_page,
        finished=outcome.finished,
    )
