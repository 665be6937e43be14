from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict


def _dump_ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _load_ts(raw: str) -> datetime:
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _decode(raw: str) -> Dict[str, Any]:
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("credential record must be a JSON object")
    return data


@dataclass(frozen=True)
class CredentialPair:
    """An access/refresh token pair owned by one username."""

    username: str
    access_token: str
    refresh_token: str
    issued_at: datetime
    access_expiry: datetime
    refresh_expiry: datetime

    def to_json(self) -> str:
        return json.dumps(
            {
                "username": self.username,
                "access_token": self.access_token,
                "refresh_token": self.refresh_token,
                "issued_at": _dump_ts(self.issued_at),
                "access_expiry": _dump_ts(self.access_expiry),
                "refresh_expiry": _dump_ts(self.refresh_expiry),
            },
            sort_keys=True,
        )

    @classmethod
    def from_json(cls, raw: str) -> "CredentialPair":
        data = _decode(raw)
        return cls(
            username=data["username"],
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            issued_at=_load_ts(data["issued_at"]),
            access_expiry=_load_ts(data["access_expiry"]),
            refresh_expiry=_load_ts(data["refresh_expiry"]),
        )

    def access_record(self) -> "AccessRecord":
        return AccessRecord(
            username=self.username,
            refresh_token=self.refresh_token,
            access_expiry=self.access_expiry,
        )

    def refresh_record(self) -> "RefreshRecord":
        return RefreshRecord(
            username=self.username,
            access_token=self.access_token,
            refresh_expiry=self.refresh_expiry,
        )


@dataclass(frozen=True)
class AccessRecord:
    """Value stored under the access-token key."""

    username: str
    refresh_token: str
    access_expiry: datetime

    def to_json(self) -> str:
        return json.dumps(
            {
                "username": self.username,
                "refresh_token": self.refresh_token,
                "access_expiry": _dump_ts(self.access_expiry),
            },
            sort_keys=True,
        )

    @classmethod
    def from_json(cls, raw: str) -> "AccessRecord":
        data = _decode(raw)
        return cls(
            username=data["username"],
            refresh_token=data["refresh_token"],
            access_expiry=_load_ts(data["access_expiry"]),
        )


@dataclass(frozen=True)
class RefreshRecord:
    """Value stored under the refresh-token key."""

    username: str
    access_token: str
    refresh_expiry: datetime

    def to_json(self) -> str:
        return json.dumps(
            {
                "username": self.username,
                "access_token": self.access_token,
                "refresh_expiry": _dump_ts(self.refresh_expiry),
            },
            sort_keys=True,
        )

    @classmethod
    def from_json(cls, raw: str) -> "RefreshRecord":
        data = _decode(raw)
        return cls(
            username=data["username"],
            access_token=data["access_token"],
            refresh_expiry=_load_ts(data["refresh_expiry"]),
        )
