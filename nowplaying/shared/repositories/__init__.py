"""Repository layer: raw SQL over the shared asyncpg pool."""

from .api_token import ApiTokenRepository
from .attempt import LinkingAttemptRepository
from .credential import CredentialRepository
from .session import SessionRepository

__all__ = [
    "ApiTokenRepository",
    "CredentialRepository",
    "LinkingAttemptRepository",
    "SessionRepository",
]
