from __future__ import annotations

import asyncio
import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from tokensmith.config import get_settings, reset_settings_cache
from tokensmith.logging import get_logger
from tokensmith.service.accounts import AccountService
from tokensmith.service.tokens import TokenService
from tokensmith.storage.credential_store import CredentialStore, MemoryCredentialStore
from tokensmith.storage.postgres import PostgresUserStore
from tokensmith.storage.redis_cache import RedisCredentialStore
from tokensmith.storage.users import MemoryUserStore, UserStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )
        self.credentials: CredentialStore = self._build_credential_store()
        self.users: UserStore = self._build_user_store()
        self.tokens = TokenService(self.credentials, self.settings)
        self.accounts = AccountService(self.users, self.tokens)
        logger.info(
            "runtime_initialized",
            credential_backend=type(self.credentials).__name__,
            user_backend=type(self.users).__name__,
            access_token_ttl_minutes=self.settings.access_token_ttl_minutes,
            refresh_token_ttl_minutes=self.settings.refresh_token_ttl_minutes,
        )

    def _build_credential_store(self) -> CredentialStore:
        if self.settings.use_memory_store:
            return MemoryCredentialStore()

        redis_error: Exception | None = None
        try:
            store = RedisCredentialStore(
                self.settings.redis_url,
                socket_timeout=self.settings.store_timeout_seconds,
            )
            store.verify_connection()
            return store
        except Exception as exc:
            redis_error = exc

        if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
            raise RuntimeError(
                "Redis is required for credential storage; start Redis or set "
                "TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for a local fallback."
            ) from redis_error

        fallback_mode = "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
        logger.warning(
            "redis_disabled_fallback",
            redis_url=_mask_url_password(self.settings.redis_url),
            error=str(redis_error),
            mode=fallback_mode,
            message=(
                f"Running without Redis under {fallback_mode}; credentials live in "
                "this process only and are not shared across instances."
            ),
        )
        return MemoryCredentialStore()

    def _build_user_store(self) -> UserStore:
        if self.settings.use_memory_store or not self.settings.database_url:
            return MemoryUserStore()
        return PostgresUserStore(self.settings.database_url)

    async def close(self) -> None:
        await self.credentials.close()
        if isinstance(self.users, PostgresUserStore):
            self.users.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()
# Closes scheduled on an already running loop; held until they finish.
_background_closes: set[asyncio.Task] = set()


def _finish_background_close(task: asyncio.Task) -> None:
    _background_closes.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "runtime_close_failed", error=str(exc), error_type=type(exc).__name__
        )


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Double-checked locking: the fast path skips the lock once the runtime
    exists.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None and isinstance(runtime.credentials, RedisCredentialStore):
            try:
                loop = asyncio.get_running_loop()
                task = loop.create_task(runtime.close())
                _background_closes.add(task)
                task.add_done_callback(_finish_background_close)
            except RuntimeError:
                asyncio.run(runtime.close())

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
