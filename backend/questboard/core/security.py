import asyncio
import re

import bcrypt

from questboard.core.errors import CredentialVerificationError, InvalidInput

MAX_EMAIL_LENGTH = 320
MAX_NAME_LENGTH = 32
# bcrypt only looks at the first 72 bytes; newer releases refuse longer input
MAX_PASSWORD_BYTES = 72
NAME_RE = re.compile(r"^[^\W_]+$")


def validate_email(email: str) -> bool:
    return "@" in email and len(email) <= MAX_EMAIL_LENGTH


def validate_username(name: str) -> bool:
    """Names are non-empty, alphanumeric (any script) and at most 32 chars."""
    return bool(NAME_RE.match(name)) and len(name) <= MAX_NAME_LENGTH


class PasswordHasher:
    """Opaque credential service: ``hash(secret)`` / ``verify(secret, digest)``.

    bcrypt is CPU-bound, so both operations run in a worker thread and the
    event loop keeps serving other requests and gameplay channels meanwhile.
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    async def hash(self, secret: str) -> str:
        raw = secret.encode("utf-8")
        if not raw or len(raw) > MAX_PASSWORD_BYTES:
            raise InvalidInput("choose another password")
        digest = await asyncio.to_thread(bcrypt.hashpw, raw, bcrypt.gensalt(rounds=self.rounds))
        return digest.decode("ascii")

    async def verify(self, secret: str, digest: str) -> bool:
        """Return whether *secret* matches *digest*.

        Fails closed: anything bcrypt cannot process (corrupt digest,
        oversized secret) raises ``CredentialVerificationError`` instead of
        being reported as a plain mismatch.
        """
        try:
            return await asyncio.to_thread(
                bcrypt.checkpw, secret.encode("utf-8"), digest.encode("ascii")
            )
        except (ValueError, UnicodeEncodeError) as exc:
            raise CredentialVerificationError() from exc
