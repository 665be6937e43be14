from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Header, HTTPException

from tokensmith.api.schemas import (
    Envelope,
    LoginRequest,
    LogoutResponse,
    RefreshRequest,
    RegisterRequest,
    TokenPairResponse,
    VerifyResponse,
)
from tokensmith.config import get_settings
from tokensmith.logging import get_logger
from tokensmith.service.runtime import get_runtime
from tokensmith.storage.models import CredentialPair

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


def _http_error(
    code: str, message: str, status_code: int, details: Optional[dict | str] = None
) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"status": "error", "error": {"code": code, "message": message, "details": details}},
    )


def _extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def _pair_envelope(pair: CredentialPair) -> Envelope:
    return Envelope(
        status="ok",
        data=TokenPairResponse.from_pair(pair).model_dump(by_alias=True, mode="json"),
    )


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest):
    """Create a user and return its first credential pair.

    Raises:
        403: If signup is disabled in settings
        409: If the username is taken
    """
    if not get_settings().allow_signup:
        raise _http_error("forbidden", "signup disabled", status_code=403)
    runtime = get_runtime()
    pair = await runtime.accounts.register(body.username, body.password)
    return _pair_envelope(pair)


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest):
    """Authenticate with username/password; any previous pair is superseded."""
    runtime = get_runtime()
    pair = await runtime.accounts.login(body.username, body.password)
    return _pair_envelope(pair)


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh(body: RefreshRequest):
    """Rotate a credential pair.

    Failures are final for the presented pair: 401 invalid refresh,
    403 mismatched pair, 409 lost a concurrent rotation. Clients must
    re-authenticate rather than retry.
    """
    runtime = get_runtime()
    pair = await runtime.tokens.rotate(body.token, body.refresh_token, body.username)
    return _pair_envelope(pair)


@router.get("/auth/verify", response_model=Envelope, tags=["auth"])
async def verify(authorization: Optional[str] = Header(None)):
    runtime = get_runtime()
    token = _extract_bearer(authorization)
    valid = bool(token) and await runtime.tokens.verify(token)
    return Envelope(status="ok", data=VerifyResponse(valid=valid).model_dump())


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(authorization: Optional[str] = Header(None)):
    runtime = get_runtime()
    token = _extract_bearer(authorization)
    if not token:
        raise _http_error("unauthorized", "missing bearer token", status_code=401)
    revoked = await runtime.tokens.revoke(token)
    return Envelope(status="ok", data=LogoutResponse(revoked=revoked).model_dump())
