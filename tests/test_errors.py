"""Tests for error classification and request helpers."""

import pytest

from paceline.services.errors import (
    CircuitOpenError,
    ErrorCode,
    NetworkError,
    classify_status,
)
from paceline.settings import Settings
from paceline.utils import (
    calculate_backoff,
    estimate_size,
    request_fingerprint,
)


class TestClassifyStatus:
    """Tests for classify_status."""

    @pytest.mark.parametrize(
        "status,code,retryable",
        [
            (0, ErrorCode.NETWORK_ERROR, True),
            (401, ErrorCode.UNAUTHORIZED, False),
            (403, ErrorCode.FORBIDDEN, False),
            (404, ErrorCode.NOT_FOUND, False),
            (429, ErrorCode.RATE_LIMITED, True),
            (400, ErrorCode.CLIENT_ERROR, False),
            (422, ErrorCode.CLIENT_ERROR, False),
            (500, ErrorCode.SERVER_ERROR, True),
            (503, ErrorCode.SERVER_ERROR, True),
            (302, ErrorCode.UNKNOWN_ERROR, False),
        ],
    )
    def test_table(self, status, code, retryable):
        """Each status maps to its code and retry policy."""
        error = classify_status(status, {"detail": "x"})
        assert error.code == code
        assert error.retryable is retryable
        assert error.status == status
        assert error.response == {"detail": "x"}
        assert error.message

    def test_to_dict(self):
        """Errors serialize their machine-readable contract."""
        data = classify_status(404).to_dict()
        assert data == {
            "code": "NOT_FOUND",
            "message": "Resource not found",
            "status": 404,
            "retryable": False,
        }

    def test_special_errors(self):
        """Circuit-open and network errors carry fixed codes."""
        assert CircuitOpenError(3.0).code == ErrorCode.CIRCUIT_OPEN
        assert CircuitOpenError(3.0).reset_after_seconds == 3.0
        assert NetworkError().code == ErrorCode.NETWORK_ERROR


class TestBackoff:
    """Tests for calculate_backoff."""

    @pytest.mark.parametrize("attempt", [0, 1, 2, 3])
    def test_exponential_with_jitter(self, attempt):
        """Delay lies between base*2^n and 110% of it."""
        delay = calculate_backoff(attempt, 1.0)
        assert 2**attempt <= delay <= 1.1 * 2**attempt

    def test_capped(self):
        """Delay never exceeds 30 seconds."""
        assert calculate_backoff(10, 1.0) == 30.0


class TestHelpers:
    """Tests for fingerprint and size helpers."""

    def test_fingerprint_without_body(self):
        """Absent bodies render as 'undefined'."""
        assert request_fingerprint("get", "/api/x") == "GET:/api/x:undefined"

    def test_fingerprint_with_body(self):
        """Bodies are compact JSON."""
        key = request_fingerprint("POST", "https://a.test/p", {"km": 5, "t": [1, 2]})
        assert key == 'POST:https://a.test/p:{"km":5,"t":[1,2]}'

    def test_estimate_size(self):
        """Size is the byte length of the JSON encoding."""
        assert estimate_size({"a": 1}) == len(b'{"a":1}')
        assert estimate_size("é") == len('"é"'.encode())
        assert estimate_size(object()) == 0


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self):
        """Defaults match the documented client behaviour."""
        settings = Settings()
        assert settings.api_base_url == ""
        assert settings.api_timeout == 30.0
        assert settings.api_retries == 3
        assert settings.circuit_failure_threshold == 5
        assert settings.debug is False

    def test_reads_env_style_mapping(self):
        """Settings are populated from environment variable names."""
        settings = Settings.model_validate(
            {"API_BASE_URL": "https://gpx.test", "API_RETRIES": "5", "PATH": "/bin"}
        )
        assert settings.api_base_url == "https://gpx.test"
        assert settings.api_retries == 5
