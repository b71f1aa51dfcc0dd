"""
Authorization guard and account operations.

Every protected operation resolves the caller the same way:
    1. no session token                 → LoginRequired
    2. token is not a UUID              → MalformedSessionToken (500)
    3. token unknown or expired         → LoginRequired
    4. otherwise                        → the user id

``require_owner`` / ``require_published`` then gate quest-editing and
play-facing operations respectively.
"""

from __future__ import annotations

import logging
import threading
import uuid

from cachetools import TTLCache

from questboard.core.errors import (
    InvalidCredentials,
    InvalidInput,
    LoginRequired,
    MalformedSessionToken,
    NotAccessibleBeforePublish,
    QuestNotFound,
    Unauthorized,
    UserNotFound,
)
from questboard.core.security import PasswordHasher, validate_email, validate_username
from questboard.services.quest_repository import QuestRecord, QuestRepository, UserRecord

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Session cache
# ---------------------------------------------------------------------------

class SessionStore:
    """Expiring token → user id map.

    Expiry is idle-based: every successful lookup re-inserts the entry,
    which restarts its TTL.
    """

    def __init__(self, ttl_seconds: int = 300, maxsize: int = 10_000) -> None:
        self.ttl_seconds = ttl_seconds
        self._cache: TTLCache[uuid.UUID, uuid.UUID] = TTLCache(maxsize=maxsize, ttl=ttl_seconds)
        self._lock = threading.Lock()

    def put(self, token: uuid.UUID, user_id: uuid.UUID) -> None:
        with self._lock:
            self._cache[token] = user_id

    def get(self, token: uuid.UUID) -> uuid.UUID | None:
        with self._lock:
            user_id = self._cache.get(token)
            if user_id is not None:
                self._cache[token] = user_id
            return user_id

    def new_session(self, user_id: uuid.UUID) -> uuid.UUID:
        token = uuid.uuid4()
        self.put(token, user_id)
        return token


def resolve_user(token: str | None, sessions: SessionStore) -> uuid.UUID:
    """Map a raw session token to the authenticated user id."""
    if not token:
        raise LoginRequired()
    try:
        key = uuid.UUID(token)
    except ValueError as exc:
        logger.warning("Rejected malformed session token")
        raise MalformedSessionToken() from exc

    user_id = sessions.get(key)
    if user_id is None:
        raise LoginRequired()
    return user_id


# ---------------------------------------------------------------------------
# Quest preconditions
# ---------------------------------------------------------------------------

async def require_owner(
    repository: QuestRepository,
    quest_id: uuid.UUID,
    user_id: uuid.UUID,
) -> QuestRecord:
    quest = await repository.get_quest(quest_id)
    if quest is None:
        raise QuestNotFound()
    if quest.owner != user_id:
        logger.debug("user=%s denied edit of quest=%s", user_id, quest_id)
        raise Unauthorized()
    return quest


async def require_published(repository: QuestRepository, quest_id: uuid.UUID) -> QuestRecord:
    quest = await repository.get_quest(quest_id)
    if quest is None:
        raise QuestNotFound()
    if not quest.published:
        raise NotAccessibleBeforePublish()
    return quest


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

async def register(
    repository: QuestRepository,
    hasher: PasswordHasher,
    sessions: SessionStore,
    *,
    name: str,
    email: str,
    password: str,
) -> tuple[UserRecord, uuid.UUID]:
    """Create an account and log it in. Returns the user and a session token."""
    if not validate_email(email):
        raise InvalidInput("email must contain '@' and be at most 320 characters long")
    if not validate_username(name):
        raise InvalidInput(
            "name must contain only alphanumeric symbols and be at most 32 characters long"
        )

    digest = await hasher.hash(password)
    user = await repository.create_user(name, email, digest)
    token = sessions.new_session(user.id)
    logger.info("Registered user id=%s name=%r", user.id, user.name)
    return user, token


async def login(
    repository: QuestRepository,
    hasher: PasswordHasher,
    sessions: SessionStore,
    *,
    name_or_email: str,
    password: str,
) -> tuple[UserRecord, uuid.UUID]:
    user = await repository.find_user_by_login(name_or_email)
    if user is None:
        raise UserNotFound("user was not found")
    if not await hasher.verify(password, user.password_hash):
        logger.info("Failed login for user id=%s", user.id)
        raise InvalidCredentials()
    token = sessions.new_session(user.id)
    logger.info("User id=%s logged in", user.id)
    return user, token


async def get_public_profile(repository: QuestRepository, name_or_email: str) -> UserRecord:
    user = await repository.find_user_by_login(name_or_email)
    if user is None:
        raise UserNotFound()
    return user
