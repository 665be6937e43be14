"""Unit tests for registration and password login."""

import pytest
from argon2 import PasswordHasher

from tokensmith.config import Settings
from tokensmith.service.accounts import AccountService
from tokensmith.service.errors import AuthenticationError, ConflictError
from tokensmith.service.tokens import TokenService
from tokensmith.storage.credential_store import MemoryCredentialStore
from tokensmith.storage.users import MemoryUserStore


@pytest.fixture
def users():
    return MemoryUserStore()


@pytest.fixture
def tokens(clock):
    return TokenService(MemoryCredentialStore(clock=clock), Settings(), clock=clock)


@pytest.fixture
def accounts(users, tokens):
    return AccountService(users, tokens)


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_issues_valid_pair(self, accounts, tokens):
        pair = await accounts.register("alice", "correct-horse")

        assert pair.username == "alice"
        assert await tokens.verify(pair.access_token) is True

    @pytest.mark.asyncio
    async def test_password_stored_as_argon2id_hash(self, accounts, users):
        await accounts.register("alice", "correct-horse")

        stored = users.lookup("alice")
        assert stored != "correct-horse"
        assert stored.startswith("$argon2id$")

    @pytest.mark.asyncio
    async def test_duplicate_username_conflicts(self, accounts):
        await accounts.register("alice", "correct-horse")

        with pytest.raises(ConflictError) as excinfo:
            await accounts.register("alice", "another-password")
        assert excinfo.value.status_code == 409
        assert excinfo.value.detail == {"field": "username"}


class TestLogin:
    @pytest.mark.asyncio
    async def test_login_supersedes_registration_pair(self, accounts, tokens):
        registered = await accounts.register("alice", "correct-horse")

        pair = await accounts.login("alice", "correct-horse")

        assert await tokens.verify(pair.access_token) is True
        assert await tokens.verify(registered.access_token) is False

    @pytest.mark.asyncio
    async def test_wrong_password_rejected(self, accounts):
        await accounts.register("alice", "correct-horse")

        with pytest.raises(AuthenticationError) as excinfo:
            await accounts.login("alice", "wrong-password")
        assert excinfo.value.error_code == "unauthorized"

    @pytest.mark.asyncio
    async def test_unknown_user_gets_same_error(self, accounts):
        with pytest.raises(AuthenticationError) as excinfo:
            await accounts.login("nobody", "whatever-pass")
        assert excinfo.value.message == "invalid credentials"

    @pytest.mark.asyncio
    async def test_outdated_hash_is_upgraded_on_login(self, accounts, users):
        weak = PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)
        original = weak.hash("correct-horse")
        users.create("alice", original)

        await accounts.login("alice", "correct-horse")

        upgraded = users.lookup("alice")
        assert upgraded != original
        assert not PasswordHasher().check_needs_rehash(upgraded)


class TestMemoryUserStore:
    def test_create_is_first_writer_wins(self, users):
        assert users.create("alice", "h1") is True
        assert users.create("alice", "h2") is False
        assert users.lookup("alice") == "h1"

    def test_update_hash_ignores_unknown_user(self, users):
        users.update_hash("ghost", "h")
        assert users.lookup("ghost") is None
