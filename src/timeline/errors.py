"""Upload error taxonomy.

Each error says whether the store may retry it. Network failures, timeouts and
5xx responses are transient; everything else is terminal.
"""

import re


class UploadError(Exception):
    """Base exception for upload failures."""

    retryable = False


class NetworkError(UploadError):
    """The server could not be reached."""

    retryable = True


class UploadTimeoutError(UploadError):
    """The request timed out."""

    retryable = True


class ServerError(UploadError):
    """The server answered with a 5xx status."""

    retryable = True

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ClientError(UploadError):
    """The request was rejected (4xx) or could not be built."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ResponseFormatError(UploadError):
    """The server response could not be understood."""

    pass


class UnsupportedItemTypeError(UploadError):
    """No upload operation exists for the item's type."""

    pass


_HTTP_5XX = re.compile(r"\b5\d\d\b")


def is_retryable(error: BaseException) -> bool:
    """Decide whether an upload failure is worth another attempt.

    UploadError subclasses carry the answer. Anything else is judged by type
    (builtin timeout/connection errors) and then by a narrow message check
    for network, timeout or an HTTP 5xx status code.
    """
    if isinstance(error, UploadError):
        return error.retryable
    if isinstance(error, (TimeoutError, ConnectionError)):
        return True
    message = str(error)
    lowered = message.lower()
    if "network" in lowered or "timeout" in lowered or "timed out" in lowered:
        return True
    return bool(_HTTP_5XX.search(message)) and "http" in lowered
