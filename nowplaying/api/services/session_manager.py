"""Dashboard sessions.

The cookie carries a signed JWT whose only claim of substance is an opaque
session id. Validity is decided by the sessions table, so deleting the row
logs the session out immediately regardless of the JWT's own expiry.
"""

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

import jwt

from nowplaying.shared.models import User
from nowplaying.shared.repositories import CredentialRepository, SessionRepository

from .api_tokens import hash_token
from .errors import Unauthenticated
from .providers import utc_now

logger = logging.getLogger(__name__)


class SessionManager:
    """Issue, validate and revoke dashboard sessions."""

    def __init__(
        self,
        sessions: SessionRepository,
        users: CredentialRepository,
        secret_key: str,
        *,
        algorithm: str = "HS256",
        expire_days: int = 7,
        clock: Callable[[], datetime] = utc_now,
    ):
        if not secret_key:
            raise ValueError("Session secret key cannot be empty")

        self.sessions = sessions
        self.users = users
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_days = expire_days
        self._clock = clock

    def _decode(self, token: str) -> tuple[str, int]:
        """Return (session id, exp) from a well-signed envelope."""
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_iat": False, "require": ["sid", "exp"]},
            )
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid session token: {e}")
            raise Unauthenticated("Invalid session") from None
        return str(payload["sid"]), payload["exp"]

    async def create_session(self, user: User) -> str:
        now = self._clock()
        expires_at = now + timedelta(days=self.expire_days)
        session_id = secrets.token_urlsafe(32)

        await self.sessions.create_session(hash_token(session_id), user.id, expires_at)

        token = jwt.encode(
            {
                "sid": session_id,
                "iat": int(now.timestamp()),
                "exp": int(expires_at.timestamp()),
            },
            self.secret_key,
            algorithm=self.algorithm,
        )
        logger.debug(f"Session created for user: {user.id}")
        return token

    async def authenticate(self, token: str | None) -> User:
        if not token:
            raise Unauthenticated("Not logged in")

        session_id, exp = self._decode(token)
        now = self._clock()
        if exp <= now.timestamp():
            raise Unauthenticated("Session expired")

        session = await self.sessions.get_session(hash_token(session_id))
        if session is None or session.expires_at <= now:
            raise Unauthenticated("Session expired")

        user = await self.users.get_user(session.user_id)
        if user is None:
            raise Unauthenticated("User not found")
        return user

    async def invalidate(self, token: str | None) -> None:
        """Delete the session behind *token*; unknown or forged tokens are ignored."""
        if not token:
            return
        try:
            session_id, _ = self._decode(token)
        except Unauthenticated:
            return
        await self.sessions.delete_session(hash_token(session_id))
