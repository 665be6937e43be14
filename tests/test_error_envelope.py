"""Tests for the error envelope format and exception mapping.

Error responses conform to the stable API envelope:
{
    "status": "error",
    "error": {
        "code": "<stable_code>",
        "message": "<human_readable>",
        "details": <object|array|null>
    },
    "request_id": "<uuid>"
}
"""

import json

import pytest
from pydantic import ValidationError

from tokensmith.api.error_handling import (
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
)
from tokensmith.api.schemas import Envelope, ErrorBody
from tokensmith.service import errors as errors_module
from tokensmith.service.errors import (
    AuthenticationError,
    ConcurrentRotation,
    ConflictError,
    InvalidRefresh,
    ServiceError,
    TokenMismatch,
)


class TestErrorBody:
    """Tests for the ErrorBody Pydantic model."""

    def test_error_body_required_fields(self):
        error = ErrorBody(code="unauthorized", message="invalid refresh token")
        assert error.code == "unauthorized"
        assert error.details is None

    def test_error_body_accepts_dict_details(self):
        error = ErrorBody(code="conflict", message="taken", details={"field": "username"})
        assert error.details == {"field": "username"}

    def test_unknown_code_rejected(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="teapot", message="nope")


class TestEnvelope:
    def test_status_must_be_ok_or_error(self):
        with pytest.raises(ValidationError):
            Envelope(status="maybe")

    def test_request_id_generated(self):
        first = Envelope(status="ok")
        second = Envelope(status="ok")
        assert first.request_id and first.request_id != second.request_id


class TestStatusMapping:
    @pytest.mark.parametrize(
        "status_code,expected",
        [
            (400, "validation_error"),
            (401, "unauthorized"),
            (403, "forbidden"),
            (404, "not_found"),
            (409, "conflict"),
            (503, "server_error"),
        ],
    )
    def test_known_statuses(self, status_code, expected):
        assert _STATUS_TO_CODE[status_code] == expected
        assert _error_code_for_status(status_code) == expected

    def test_unknown_status_falls_back_to_server_error(self):
        assert _error_code_for_status(418) == "server_error"

    def test_error_response_body(self):
        response = _error_response(409, "credential pair already rotated")
        body = json.loads(response.body)

        assert response.status_code == 409
        assert body["status"] == "error"
        assert body["data"] is None
        assert body["error"] == {
            "code": "conflict",
            "message": "credential pair already rotated",
            "details": None,
        }


class TestRotationErrorStatuses:
    """Each refresh failure maps to its own 4xx."""

    @pytest.mark.parametrize(
        "exc_type,status_code,code",
        [
            (InvalidRefresh, 401, "unauthorized"),
            (TokenMismatch, 403, "forbidden"),
            (ConcurrentRotation, 409, "conflict"),
            (AuthenticationError, 401, "unauthorized"),
            (ConflictError, 409, "conflict"),
        ],
    )
    def test_status_and_code(self, exc_type, status_code, code):
        exc = exc_type("boom")
        assert isinstance(exc, ServiceError)
        assert exc.status_code == status_code
        assert exc.error_code == code

    def test_rotation_statuses_are_distinct(self):
        statuses = {cls("x").status_code for cls in (InvalidRefresh, TokenMismatch, ConcurrentRotation)}
        assert len(statuses) == 3

    def test_forbidden_reserved_for_token_mismatch(self):
        exported = [getattr(errors_module, name) for name in errors_module.__all__]
        assert [cls for cls in exported if cls.status_code == 403] == [TokenMismatch]

    def test_overrides_apply_per_instance(self):
        exc = ServiceError("custom", status_code=422, error_code="validation_error", detail={"a": 1})
        assert exc.status_code == 422
        assert exc.detail == {"a": 1}
        assert ServiceError("plain").status_code == 400
