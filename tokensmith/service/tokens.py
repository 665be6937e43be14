from __future__ import annotations

import asyncio
import hmac
import json
import secrets
from datetime import datetime, timedelta
from typing import Awaitable, Optional, Type, TypeVar

from tokensmith.config import Settings
from tokensmith.logging import get_logger
from tokensmith.service.errors import (
    ConcurrentRotation,
    InvalidRefresh,
    TokenMismatch,
    ValidationError,
)
from tokensmith.storage.credential_store import (
    Clock,
    CredentialStore,
    ttl_seconds_until,
    utc_now,
)
from tokensmith.storage.errors import StoreUnavailable
from tokensmith.storage.models import AccessRecord, CredentialPair, RefreshRecord

logger = get_logger(__name__)

T = TypeVar("T")
_Record = TypeVar("_Record", AccessRecord, RefreshRecord, CredentialPair)


def _same(left: str, right: str) -> bool:
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


class TokenService:
    """Issue, verify and rotate access/refresh credential pairs.

    The service holds no credential state of its own. Three store entries
    describe an active pair:

    - ``<prefix>:access:<access_token>`` -> AccessRecord (lookup index)
    - ``<prefix>:refresh:<refresh_token>`` -> RefreshRecord
    - ``<prefix>:user:<username>`` -> CredentialPair (canonical record)

    A pair is recognized only while the canonical record for its username
    names it, which is what retires a prior pair when a new one is issued.
    """

    def __init__(
        self,
        store: CredentialStore,
        settings: Settings,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.settings = settings
        self._clock = clock
        self._prefix = settings.credential_key_prefix
        self._access_ttl = timedelta(minutes=settings.access_token_ttl_minutes)
        self._refresh_ttl = timedelta(minutes=settings.refresh_token_ttl_minutes)
        self._timeout = settings.store_timeout_seconds

    def _now(self) -> datetime:
        return self._clock()

    def _access_key(self, access_token: str) -> str:
        return f"{self._prefix}:access:{access_token}"

    def _refresh_key(self, refresh_token: str) -> str:
        return f"{self._prefix}:refresh:{refresh_token}"

    def _user_key(self, username: str) -> str:
        return f"{self._prefix}:user:{username}"

    def _new_token(self) -> str:
        return secrets.token_urlsafe(self.settings.token_bytes)

    async def _call(self, op: str, awaitable: Awaitable[T]) -> T:
        """Run one store round-trip under the configured deadline."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.error(
                "store_unavailable",
                op=op,
                reason="timeout",
                timeout_seconds=self._timeout,
            )
            raise StoreUnavailable("credential store timed out", {"op": op}) from exc

    @staticmethod
    def _parse(model: Type[_Record], raw: Optional[str], key_kind: str) -> Optional[_Record]:
        if raw is None:
            return None
        try:
            return model.from_json(raw)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            # Corrupted record - treat as absent
            logger.warning("credential_record_corrupt", key_kind=key_kind)
            return None

    async def _read(
        self, model: Type[_Record], key: str, key_kind: str
    ) -> tuple[Optional[str], Optional[_Record]]:
        raw = await self._call("get", self.store.get(key))
        return raw, self._parse(model, raw, key_kind)

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def _new_pair(self, username: str) -> CredentialPair:
        now = self._now()
        return CredentialPair(
            username=username,
            access_token=self._new_token(),
            refresh_token=self._new_token(),
            issued_at=now,
            access_expiry=now + self._access_ttl,
            refresh_expiry=now + self._refresh_ttl,
        )

    async def _write_index(self, pair: CredentialPair) -> None:
        """Store the access and refresh entries; unrecognized until committed."""
        await self._call(
            "put",
            self.store.put(
                self._access_key(pair.access_token),
                pair.access_record().to_json(),
                ttl_seconds_until(pair.access_expiry, pair.issued_at),
            ),
        )
        await self._call(
            "put",
            self.store.put(
                self._refresh_key(pair.refresh_token),
                pair.refresh_record().to_json(),
                ttl_seconds_until(pair.refresh_expiry, pair.issued_at),
            ),
        )

    async def _commit(self, pair: CredentialPair) -> None:
        """Point the canonical record at ``pair``, superseding any other pair."""
        await self._call(
            "put",
            self.store.put(
                self._user_key(pair.username),
                pair.to_json(),
                ttl_seconds_until(pair.refresh_expiry, pair.issued_at),
            ),
        )

    async def _discard(self, username: str, *keys: str) -> None:
        """Delete entries no canonical record names any more.

        Leftovers never verify and expire by TTL, so a failure here is
        logged instead of failing a request whose pair is already committed.
        """
        for key in keys:
            try:
                await self._call("delete", self.store.delete(key))
            except StoreUnavailable:
                logger.warning(
                    "stale_entry_cleanup_failed",
                    username=username,
                    key_kind=key.rsplit(":", 2)[-2],
                )

    async def issue(self, username: str) -> CredentialPair:
        """Create and persist a fresh pair for an authenticated username.

        Any pair the username already holds is superseded. Store failures
        propagate as StoreUnavailable.
        """
        if not username:
            raise ValidationError("username is required")

        _, prior = await self._read(CredentialPair, self._user_key(username), "user")
        pair = self._new_pair(username)
        await self._write_index(pair)
        # Canonical record last: until it lands, the new tokens do not verify.
        await self._commit(pair)

        if prior is not None:
            await self._discard(
                username,
                self._access_key(prior.access_token),
                self._refresh_key(prior.refresh_token),
            )

        logger.info(
            "tokens_issued",
            username=username,
            superseded=prior is not None,
            access_expiry=pair.access_expiry.isoformat(),
            refresh_expiry=pair.refresh_expiry.isoformat(),
        )
        return pair

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def verify(self, access_token: str) -> bool:
        """Return whether ``access_token`` is currently valid.

        Read-only: verification never extends a token's lifetime.
        """
        if not access_token:
            return False
        _, record = await self._read(
            AccessRecord, self._access_key(access_token), "access"
        )
        if record is None or self._now() >= record.access_expiry:
            return False
        _, current = await self._read(
            CredentialPair, self._user_key(record.username), "user"
        )
        if current is None:
            return False
        return _same(current.access_token, access_token)

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    async def rotate(
        self, old_access_token: str, old_refresh_token: str, username: str
    ) -> CredentialPair:
        """Exchange a valid pair for a new one.

        The old pair stays recognized until the canonical record is
        overwritten, so a store failure mid-rotation never leaves the
        username without a pair.

        Raises:
            InvalidRefresh: refresh token absent, expired or superseded
            TokenMismatch: the tokens/username do not belong together
            ConcurrentRotation: another caller invalidated the pair first
        """
        if not old_refresh_token:
            raise InvalidRefresh("invalid refresh token")

        refresh_key = self._refresh_key(old_refresh_token)
        raw_refresh, record = await self._read(RefreshRecord, refresh_key, "refresh")
        if record is None or self._now() >= record.refresh_expiry:
            logger.info("rotation_rejected", reason="invalid_refresh", username=username)
            raise InvalidRefresh("invalid refresh token")

        if not (
            _same(record.username, username or "")
            and _same(record.access_token, old_access_token or "")
        ):
            # Possible replay or tampering; the caller learns nothing more.
            logger.warning("token_mismatch", username=username)
            raise TokenMismatch("token pair mismatch")

        _, current = await self._read(CredentialPair, self._user_key(username), "user")
        if current is None or not _same(current.refresh_token, old_refresh_token):
            logger.info("rotation_rejected", reason="superseded", username=username)
            raise InvalidRefresh("invalid refresh token")

        pair = self._new_pair(username)
        await self._write_index(pair)

        # Only the caller that still sees the refresh entry read above wins.
        if not await self._call(
            "compare_and_delete", self.store.compare_and_delete(refresh_key, raw_refresh)
        ):
            logger.warning("rotation_conflict", username=username)
            await self._discard(
                username,
                self._access_key(pair.access_token),
                self._refresh_key(pair.refresh_token),
            )
            raise ConcurrentRotation("credential pair already rotated")

        await self._commit(pair)
        await self._discard(username, self._access_key(old_access_token))

        logger.info(
            "tokens_rotated",
            username=username,
            access_expiry=pair.access_expiry.isoformat(),
            refresh_expiry=pair.refresh_expiry.isoformat(),
        )
        return pair

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    async def revoke(self, access_token: str) -> bool:
        """Delete the active pair named by ``access_token``.

        Returns False when the token is not currently valid.
        """
        if not access_token:
            return False
        _, record = await self._read(
            AccessRecord, self._access_key(access_token), "access"
        )
        if record is None or self._now() >= record.access_expiry:
            return False
        user_key = self._user_key(record.username)
        raw_pair, current = await self._read(CredentialPair, user_key, "user")
        if current is None or not _same(current.access_token, access_token):
            return False
        if not await self._call(
            "compare_and_delete", self.store.compare_and_delete(user_key, raw_pair)
        ):
            return False
        await self._discard(
            record.username,
            self._access_key(access_token),
            self._refresh_key(current.refresh_token),
        )
        logger.info("tokens_revoked", username=record.username)
        return True

