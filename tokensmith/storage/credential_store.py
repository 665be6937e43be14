from __future__ import annotations

import asyncio
import math
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Protocol, Tuple

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Timezone-aware UTC helper to avoid naive datetime usage."""

    return datetime.now(timezone.utc)


def ttl_seconds_until(expires_at: datetime, now: datetime) -> int:
    """Whole seconds from ``now`` until ``expires_at``, rounded up.

    Clamped to at least 1 second because Redis rejects zero or negative TTLs;
    callers check the absolute expiry themselves before trusting a record.
    """

    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    remaining = (expires_at - now).total_seconds()
    return max(1, math.ceil(remaining))


class CredentialStore(Protocol):
    """Key-value store with per-key TTL used for credential records.

    Keys live in a single flat namespace; callers own key construction.
    Implementations raise ``StoreUnavailable`` on transport failures.
    """

    async def put(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def delete(self, key: str) -> None: ...

    async def compare_and_delete(self, key: str, expected: str) -> bool: ...

    async def ping(self) -> None: ...

    async def close(self) -> None: ...


class MemoryCredentialStore:
    """In-process credential store for tests and single-node development.

    Expiry is evaluated lazily against the injected clock, so tests can move
    time forward without sleeping.
    """

    def __init__(self, *, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[str, datetime]] = {}
        self._lock = threading.Lock()

    def _live_value(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        # Every operation yields once, like a network round-trip would.
        await asyncio.sleep(0)
        expires_at = self._clock() + timedelta(seconds=max(1, int(ttl_seconds)))
        with self._lock:
            self._entries[key] = (value, expires_at)

    async def get(self, key: str) -> Optional[str]:
        await asyncio.sleep(0)
        with self._lock:
            return self._live_value(key)

    async def delete(self, key: str) -> None:
        await asyncio.sleep(0)
        with self._lock:
            self._entries.pop(key, None)

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        await asyncio.sleep(0)
        with self._lock:
            if self._live_value(key) != expected:
                return False
            del self._entries[key]
            return True

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for key in list(self._entries) if self._live_value(key))
