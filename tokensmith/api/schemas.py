from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tokensmith.storage.models import CredentialPair

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "validation_error",
    "conflict",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    """API envelope format."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


_USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


def _validate_username(value: str) -> str:
    """Usernames are 1-64 characters of letters, digits, '_', '.' or '-'."""
    if not isinstance(value, str):
        raise ValueError("username must be a string")
    normalized = unicodedata.normalize("NFKC", value.strip())
    if not normalized:
        raise ValueError("username must be at least 1 character")
    if len(normalized) > 64:
        raise ValueError("username must be at most 64 characters")
    if not _USERNAME_PATTERN.match(normalized):
        raise ValueError(
            "username must contain only letters, digits, underscores, dots, and hyphens"
        )
    return normalized


def _validate_password_strength(value: str) -> str:
    """Validate password meets minimum requirements."""
    if len(value) < 8:
        raise ValueError("password must be at least 8 characters")
    if len(value) > 128:
        raise ValueError("password must be at most 128 characters")
    return value


class CredentialsRequest(BaseModel):
    username: str
    password: str

    @field_validator("username")
    @classmethod
    def _check_username(cls, value: str) -> str:
        return _validate_username(value)


class RegisterRequest(CredentialsRequest):
    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        return _validate_password_strength(value)


class LoginRequest(CredentialsRequest):
    password: str = Field(..., max_length=128)


class RefreshRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str = Field(..., max_length=512)
    refresh_token: str = Field(..., alias="refToken", max_length=512)
    username: str

    @field_validator("username")
    @classmethod
    def _check_username(cls, value: str) -> str:
        return _validate_username(value)


class TokenPairResponse(BaseModel):
    """Issued pair as returned to clients: ``{token, refToken, username}``."""

    model_config = ConfigDict(populate_by_name=True)

    token: str
    refresh_token: str = Field(..., alias="refToken")
    username: str
    expires_at: datetime = Field(..., alias="expiresAt")
    refresh_expires_at: datetime = Field(..., alias="refExpiresAt")

    @classmethod
    def from_pair(cls, pair: CredentialPair) -> "TokenPairResponse":
        return cls(
            token=pair.access_token,
            refresh_token=pair.refresh_token,
            username=pair.username,
            expires_at=pair.access_expiry,
            refresh_expires_at=pair.refresh_expiry,
        )


class VerifyResponse(BaseModel):
    valid: bool


class LogoutResponse(BaseModel):
    revoked: bool

