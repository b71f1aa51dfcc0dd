"""
Error taxonomy shared by services and routes.

Every failure a caller can act on is a ``QuestError`` carrying the HTTP
status it maps to and a client-facing detail. Routes translate these into
``HTTPException``; the gameplay channel turns them into ``error`` messages.

Internal errors (storage failures, malformed session tokens) never expose
their underlying cause to the client: the causing exception is chained
and logged server-side only.
"""

from __future__ import annotations

import re

from fastapi import status

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


class QuestError(Exception):
    """Base class for all domain errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: str = "bad request"

    def __init__(self, detail: str | None = None) -> None:
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)

    @property
    def code(self) -> str:
        """Snake-case class name, e.g. ``already_joined``."""
        return _CAMEL_RE.sub("_", type(self).__name__).lower()


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class InvalidInput(QuestError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    detail = "invalid input"


class PageIndexTooHigh(QuestError):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "provided page number exceeds the next writable page"


class UserAlreadyExists(QuestError):
    status_code = status.HTTP_409_CONFLICT
    detail = "user with this name or email already exists"


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

class LoginRequired(QuestError):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "login required"


class InvalidCredentials(QuestError):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "access denied"


class CredentialVerificationError(QuestError):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "such password cannot be verified"


class Unauthorized(QuestError):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "you do not own this quest"


class NotAccessibleBeforePublish(QuestError):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "quest is not published"


class AlreadyPublished(QuestError):
    status_code = status.HTTP_409_CONFLICT
    detail = "quest is already published"


class AlreadyJoined(QuestError):
    status_code = status.HTTP_409_CONFLICT
    detail = "already joined this quest"


class NotJoined(QuestError):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "not joined to quest"


class NotFinished(QuestError):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "quest is not finished"


class AlreadyFinished(QuestError):
    status_code = status.HTTP_409_CONFLICT
    detail = "quest is already finished"


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------

class UserNotFound(QuestError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "user not found"


class QuestNotFound(QuestError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "there is no such quest"


class PageNotFound(QuestError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "there is no such page"


# ---------------------------------------------------------------------------
# Internal
# ---------------------------------------------------------------------------

class InternalError(QuestError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "internal server error, contact administrator with description of this situation"


class MalformedSessionToken(InternalError):
    """Session cookie present but not a token this server could have issued."""


class StorageError(InternalError):
    """A repository call failed; the cause is chained, never shown to clients."""
