import uuid
from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from questboard.services.questions import Answer, AskPageElement


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=32, examples=["alice"])
    email: str = Field(..., min_length=3, max_length=320, examples=["alice@example.org"])
    password: str = Field(..., min_length=1, max_length=72)


class LoginRequest(BaseModel):
    name_or_email: str = Field(..., min_length=1, max_length=320)
    password: str = Field(..., min_length=1)


class AuthResponse(BaseModel):
    id: uuid.UUID


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: str


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------

class QuestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner: uuid.UUID
    title: str
    description: str
    pages: int
    published: bool


class QuestInfoUpdate(BaseModel):
    title: str = ""
    description: str = ""


class PageWrite(BaseModel):
    source: str
    time_limit_seconds: int | None = Field(default=None, ge=1)


class PageSourceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    quest_id: uuid.UUID
    page: int
    source: str
    time_limit_seconds: int | None = None


class OwnedQuestOut(BaseModel):
    id: uuid.UUID
    owner: uuid.UUID
    title: str
    pages: int
    state: str


class OwnedQuestsPageOut(BaseModel):
    data: list[OwnedQuestOut]
    page: int
    total_pages: int


# ---------------------------------------------------------------------------
# Play history / ratings
# ---------------------------------------------------------------------------

class ProgressOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: uuid.UUID
    quest_id: uuid.UUID
    started_at: datetime
    finished_at: datetime | None = None
    completed_pages: int


class Completion(BaseModel):
    completed: int
    total_pages: int


class HistoryRecordOut(BaseModel):
    quest_id: uuid.UUID
    started_at: datetime
    finished_at: datetime | None = None
    completion: Completion
    rating: int | None = None


class HistoryPageOut(BaseModel):
    data: list[HistoryRecordOut]
    page: int
    total_pages: int


class RatingRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(default="", max_length=2000)


class OwnerRatingOut(BaseModel):
    owner: uuid.UUID
    average_rating: float


# ---------------------------------------------------------------------------
# Gameplay channel (WebSocket)
# ---------------------------------------------------------------------------

class RequestPageMessage(BaseModel):
    type: Literal["request_page"]
    page: int = Field(..., ge=0)


class SubmitMessage(BaseModel):
    type: Literal["submit"]
    page: int = Field(..., ge=0)
    answers: list[Answer]


ClientMessage = Annotated[
    Union[RequestPageMessage, SubmitMessage],
    Field(discriminator="type"),
]


class PageMessage(BaseModel):
    type: Literal["page"] = "page"
    page: int
    elements: list[AskPageElement]
    time_limit_seconds: int | None = None


class RedirectMessage(BaseModel):
    """The requested page is not servable; the player must request *page*."""

    type: Literal["redirect"] = "redirect"
    page: int


class SubmitResultMessage(BaseModel):
    type: Literal["submit_result"] = "submit_result"
    page: int
    results: list[bool]
    accepted: bool
    next_page: int
    finished: bool


class ErrorMessage(BaseModel):
    type: Literal["error"] = "error"
    code: str
    detail: str


ServerMessage = Union[PageMessage, RedirectMessage, SubmitResultMessage, ErrorMessage]
