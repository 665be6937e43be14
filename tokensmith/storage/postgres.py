from __future__ import annotations

from typing import Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from tokensmith.logging import get_logger
from tokensmith.storage.errors import StoreUnavailable


class PostgresUserStore:
    """Thin Postgres-backed user store keyed by username."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": True},
            open=True,
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the ``app_user`` table if it is missing."""

        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS app_user (
                        username TEXT PRIMARY KEY,
                        password_hash TEXT NOT NULL,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                    """
                )
        except errors.OperationalError as exc:
            self.logger.error("user_store_schema_failed", error=str(exc))
            raise StoreUnavailable("user store unavailable") from exc

    def create(self, username: str, password_hash: str) -> bool:
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO app_user (username, password_hash) VALUES (%s, %s)",
                    (username, password_hash),
                )
        except errors.UniqueViolation:
            return False
        except errors.OperationalError as exc:
            self.logger.error("user_store_unavailable", op="create", error=str(exc))
            raise StoreUnavailable("user store unavailable", {"op": "create"}) from exc
        return True

    def lookup(self, username: str) -> Optional[str]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT password_hash FROM app_user WHERE username = %s",
                    (username,),
                ).fetchone()
        except errors.OperationalError as exc:
            self.logger.error("user_store_unavailable", op="lookup", error=str(exc))
            raise StoreUnavailable("user store unavailable", {"op": "lookup"}) from exc
        if not row:
            return None
        return str(row["password_hash"])

    def update_hash(self, username: str, password_hash: str) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    UPDATE app_user SET password_hash = %s, updated_at = now()
                    WHERE username = %s
                    """,
                    (password_hash, username),
                )
        except errors.OperationalError as exc:
            self.logger.error("user_store_unavailable", op="update_hash", error=str(exc))
            raise StoreUnavailable("user store unavailable", {"op": "update_hash"}) from exc

    def close(self) -> None:
        self.pool.close()
