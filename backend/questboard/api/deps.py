import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import Depends, HTTPException, Response, status
from fastapi.requests import HTTPConnection

from questboard.core.config import settings
from questboard.core.errors import InternalError, QuestError
from questboard.core.security import PasswordHasher
from questboard.services.auth_service import SessionStore, resolve_user
from questboard.services.quest_repository import QuestRepository

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Injectable collaborators (constructed by create_app, kept on app.state)
# ---------------------------------------------------------------------------

def get_repository(conn: HTTPConnection) -> QuestRepository:
    return conn.app.state.repository


def get_sessions(conn: HTTPConnection) -> SessionStore:
    return conn.app.state.sessions


def get_hasher(conn: HTTPConnection) -> PasswordHasher:
    return conn.app.state.hasher


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------

@contextmanager
def http_errors(operation: str) -> Iterator[None]:
    """Translate domain errors raised inside the block into HTTPExceptions."""
    try:
        yield
    except HTTPException:
        raise
    except QuestError as exc:
        if isinstance(exc, InternalError):
            logger.error("%s failed: %s", operation, exc, exc_info=True)
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
    except Exception as exc:
        logger.error("%s error: %s", operation, exc, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=InternalError.detail,
        ) from exc


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

def session_token(conn: HTTPConnection) -> str | None:
    return conn.cookies.get(settings.session_cookie_name)


def current_user(
    conn: HTTPConnection,
    sessions: SessionStore = Depends(get_sessions),
) -> uuid.UUID:
    """FastAPI dependency: the authenticated caller's user id."""
    with http_errors("resolve session"):
        return resolve_user(session_token(conn), sessions)


def set_session_cookie(response: Response, token: uuid.UUID, sessions: SessionStore) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=str(token),
        max_age=sessions.ttl_seconds,
        httponly=True,
        samesite="lax",
    )
