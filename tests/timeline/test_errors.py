"""Tests for upload failure classification."""

import pytest

from timeline.errors import (
    ClientError,
    NetworkError,
    ResponseFormatError,
    ServerError,
    UnsupportedItemTypeError,
    UploadTimeoutError,
    is_retryable,
)


class TestIsRetryable:
    """Tests for is_retryable."""

    @pytest.mark.parametrize(
        "error",
        [
            NetworkError("Network request failed"),
            UploadTimeoutError("Read timed out"),
            ServerError("HTTP 503: Service Unavailable", 503),
            TimeoutError(),
            ConnectionResetError("reset by peer"),
            RuntimeError("Network request failed"),
            RuntimeError("Request timeout"),
            RuntimeError("HTTP 500: Internal Server Error"),
        ],
    )
    def test_transient(self, error):
        assert is_retryable(error) is True

    @pytest.mark.parametrize(
        "error",
        [
            ClientError("HTTP 400: Bad Request", 400),
            ResponseFormatError("Voice upload response has no id"),
            UnsupportedItemTypeError("Unknown item type: photo"),
            RuntimeError("HTTP 404: Not Found"),
            RuntimeError("listening on port 50080"),
            RuntimeError("5 items, 0 uploaded"),
            ValueError("bad payload"),
        ],
    )
    def test_terminal(self, error):
        assert is_retryable(error) is False

    def test_typed_error_ignores_message(self):
        assert is_retryable(ClientError("network policy rejected upload", 403)) is False

    def test_status_code_kept(self):
        assert ServerError("HTTP 502: Bad Gateway", 502).status_code == 502
        assert ClientError("HTTP 413: Too Large", 413).status_code == 413
