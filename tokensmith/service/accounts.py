from __future__ import annotations

from typing import Tuple

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from tokensmith.logging import get_logger
from tokensmith.service.errors import AuthenticationError, ConflictError
from tokensmith.service.tokens import TokenService
from tokensmith.storage.models import CredentialPair
from tokensmith.storage.users import UserStore

logger = get_logger(__name__)


class AccountService:
    """Registration and login in front of the token issuer."""

    def __init__(self, users: UserStore, tokens: TokenService) -> None:
        self.users = users
        self.tokens = tokens
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        # Verified against when the username is unknown so both paths cost
        # one argon2 verification.
        self._dummy_hash = self._pwd_hasher.hash("tokensmith-unknown-user")

    def _hash_password(self, password: str) -> str:
        return self._pwd_hasher.hash(password)

    def _verify_password(self, stored_hash: str, password: str) -> Tuple[bool, bool]:
        """Return (matches, needs_rehash)."""
        try:
            self._pwd_hasher.verify(stored_hash, password)
        except (VerifyMismatchError, VerificationError, InvalidHash):
            return False, False
        return True, self._pwd_hasher.check_needs_rehash(stored_hash)

    async def register(self, username: str, password: str) -> CredentialPair:
        pwd_hash = self._hash_password(password)
        if not self.users.create(username, pwd_hash):
            logger.info("register_conflict", username=username)
            raise ConflictError("username already exists", detail={"field": "username"})
        logger.info("user_registered", username=username)
        return await self.tokens.issue(username)

    async def login(self, username: str, password: str) -> CredentialPair:
        stored_hash = self.users.lookup(username)
        if stored_hash is None:
            self._verify_password(self._dummy_hash, password)
            logger.info("login_failed", username=username, reason="unknown_user")
            raise AuthenticationError("invalid credentials")
        matches, needs_rehash = self._verify_password(stored_hash, password)
        if not matches:
            logger.info("login_failed", username=username, reason="bad_password")
            raise AuthenticationError("invalid credentials")
        if needs_rehash:
            self.users.update_hash(username, self._hash_password(password))
            logger.info("password_rehashed", username=username)
        return await self.tokens.issue(username)
