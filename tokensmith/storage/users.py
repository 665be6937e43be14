from __future__ import annotations

import threading
from typing import Dict, Optional, Protocol


class UserStore(Protocol):
    def create(self, username: str, password_hash: str) -> bool:
        """Insert a user; False when the username is already taken."""
        ...

    def lookup(self, username: str) -> Optional[str]:
        """Return the stored password hash, or None for an unknown user."""
        ...

    def update_hash(self, username: str, password_hash: str) -> None: ...


class MemoryUserStore:
    """Minimal in-memory user records for tests and local development."""

    def __init__(self) -> None:
        self._hashes: Dict[str, str] = {}
        self._data_lock = threading.Lock()

    def create(self, username: str, password_hash: str) -> bool:
        with self._data_lock:
            if username in self._hashes:
                return False
            self._hashes[username] = password_hash
            return True

    def lookup(self, username: str) -> Optional[str]:
        with self._data_lock:
            return self._hashes.get(username)

    def update_hash(self, username: str, password_hash: str) -> None:
        with self._data_lock:
            if username in self._hashes:
                self._hashes[username] = password_hash
