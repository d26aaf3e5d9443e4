"""Posting tokens for the /api/post endpoint.

The URL token identifies the user in the path; the optional header token is
a second factor sent as ``Authorization: Bearer``. Only SHA-256 hashes are
persisted, so a plaintext value is shown exactly once, at rotation.
"""

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass

from nowplaying.shared.models import User
from nowplaying.shared.repositories import ApiTokenRepository

from .errors import NotConnected, Unauthenticated

logger = logging.getLogger(__name__)

HINT_LENGTH = 4


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def token_hint(token: str) -> str:
    return token[-HINT_LENGTH:]


def generate_url_token() -> str:
    return secrets.token_urlsafe(32)


@dataclass
class IssuedToken:
    """A freshly rotated token; ``token`` is never readable again."""

    token: str
    hint: str


class ApiTokenService:
    def __init__(self, repo: ApiTokenRepository):
        self.repo = repo

    async def rotate_url_token(self, user_id: str) -> IssuedToken:
        token = generate_url_token()
        hint = token_hint(token)
        if not await self.repo.set_url_token(user_id, hash_token(token), hint):
            raise NotConnected("User not found")
        logger.info(f"URL token rotated for user {user_id}")
        return IssuedToken(token=token, hint=hint)

    async def generate_header_token(self, user_id: str) -> IssuedToken:
        token = secrets.token_hex(32)
        if not await self.repo.set_header_token(user_id, hash_token(token)):
            raise NotConnected("User not found")
        logger.info(f"Header token enabled for user {user_id}")
        return IssuedToken(token=token, hint=token_hint(token))

    async def disable_header_token(self, user_id: str) -> None:
        await self.repo.disable_header_token(user_id)
        logger.info(f"Header token disabled for user {user_id}")

    async def authenticate(self, url_token: str, authorization: str | None) -> User:
        """Resolve the posting user from the URL token and, when enabled, the header."""
        if not url_token:
            raise Unauthenticated("missing token")

        user = await self.repo.get_user_by_url_token_hash(hash_token(url_token))
        if user is None:
            raise Unauthenticated("token not found")

        if user.api_header_token_enabled:
            if not authorization:
                raise Unauthenticated("authorization header required")
            scheme, _, provided = authorization.partition(" ")
            if scheme.lower() != "bearer" or not provided.strip():
                raise Unauthenticated("invalid authorization header format")
            expected = user.api_header_token_hash or ""
            if not hmac.compare_digest(hash_token(provided.strip()), expected):
                raise Unauthenticated("invalid token")

        return user
