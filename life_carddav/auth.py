"""HTTP Basic authentication against a user directory."""

from __future__ import annotations

import base64
import binascii
import logging
import uuid
from dataclasses import dataclass
from typing import Protocol

from passlib.context import CryptContext

from .config import DEFAULT_REALM
from .internal import HTTPError

logger = logging.getLogger("life_carddav.auth")

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored hash; unknown hash formats never match."""
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError):
        logger.warning("Stored password hash has an unrecognised format")
        return False


@dataclass
class UserRecord:
    """Stored user account."""

    id: str
    email: str
    password_hash: str


@dataclass
class AuthUser:
    """Identity attached to an authenticated request."""

    user_id: str
    email: str


class UserDirectory(Protocol):
    """Lookup of user accounts by email."""

    async def get_user_by_email(self, email: str) -> UserRecord | None:
        ...


class MemoryUserDirectory:
    """User directory kept in process memory."""

    def __init__(self) -> None:
        self._users: dict[str, UserRecord] = {}

    def add_user(self, email: str, password: str, user_id: str | None = None) -> UserRecord:
        """Register a user, hashing the password."""
        user = UserRecord(
            id=user_id or str(uuid.uuid4()),
            email=email,
            password_hash=hash_password(password),
        )
        self._users[email.lower()] = user
        return user

    async def get_user_by_email(self, email: str) -> UserRecord | None:
        return self._users.get(email.lower())


class AuthenticationError(HTTPError):
    """401 carrying the Basic challenge for the configured realm."""

    def __init__(self, realm: str) -> None:
        super().__init__(401)
        self.realm = realm

    @property
    def headers(self) -> dict[str, str]:
        return {"WWW-Authenticate": f'Basic realm="{self.realm}"'}


class BasicAuthenticator:
    """Validates Authorization headers against a UserDirectory.

    Args:
        users: User directory
        realm: Realm announced in the WWW-Authenticate challenge
    """

    def __init__(self, users: UserDirectory, realm: str = DEFAULT_REALM) -> None:
        self.users = users
        self.realm = realm

    async def authenticate(self, authorization: str | None) -> AuthUser:
        """Authenticate a request.

        Args:
            authorization: Value of the Authorization header

        Returns:
            The authenticated user

        Raises:
            AuthenticationError: If credentials are missing or wrong
        """
        # Auth schemes are case-insensitive (RFC 7617)
        scheme, _, credentials = (authorization or "").strip().partition(" ")
        if scheme.lower() != "basic" or not credentials.strip():
            raise AuthenticationError(self.realm)

        try:
            decoded = base64.b64decode(credentials.strip(), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            logger.info("Rejected malformed Basic credentials")
            raise AuthenticationError(self.realm) from None

        # Passwords may contain colons; only the first one separates the email
        email, _, password = decoded.partition(":")
        if not email or not password:
            raise AuthenticationError(self.realm)

        user = await self.users.get_user_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            logger.info(f"Authentication failed for {email}")
            raise AuthenticationError(self.realm)

        return AuthUser(user_id=user.id, email=user.email)
