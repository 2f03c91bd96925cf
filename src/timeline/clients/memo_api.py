"""HTTP client for the memo and interview upload API."""

from pathlib import Path
from typing import Any

import requests

from common.constants import DEFAULT_VOICE_TITLE
from common.logger import get_logger
from timeline.errors import (
    ClientError,
    NetworkError,
    ResponseFormatError,
    ServerError,
    UploadTimeoutError,
)
from timeline.models import InterviewAnswerPayload, TextPayload, TimelineItem, VoicePayload

from .base import UploadClient

logger = get_logger(__name__)


class MemoAPIClient(UploadClient):
    """Client for the life story backend.

    Endpoints:
    - POST /memos/text          text memo (JSON)
    - POST /memos/upload        voice memo (multipart, field 'audio')
    - POST /interviews/answer   interview answer (JSON)
    - GET  /memos/<id>/status   transcription status

    No timeout is applied unless one is given.
    """

    TEXT_MEMO_PATH = "/memos/text"
    VOICE_MEMO_PATH = "/memos/upload"
    INTERVIEW_ANSWER_PATH = "/interviews/answer"
    MEMO_STATUS_PATH = "/memos/{server_id}/status"

    def __init__(
        self,
        base_url: str,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: API root, e.g. http://localhost:8080
            timeout: Per-request timeout in seconds (None waits indefinitely)
            session: Session to reuse (a new one is created if omitted)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": "lifestory-timeline/1.0"})

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """Send a request and decode its JSON object body.

        Raises:
            UploadTimeoutError: If the request times out
            NetworkError: If the server cannot be reached
            ServerError: On a 5xx response
            ClientError: On any other error response
            ResponseFormatError: If the body is not a JSON object
        """
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise UploadTimeoutError(f"Request timeout: {method} {path}") from e
        except requests.exceptions.ConnectionError as e:
            raise NetworkError(f"Network request failed: {method} {path}") from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            reason = e.response.reason if e.response is not None else ""
            message = f"HTTP {status}: {reason}".rstrip(": ")
            if status is not None and status >= 500:
                raise ServerError(message, status) from e
            raise ClientError(message, status) from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Network request failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise ResponseFormatError(f"Invalid JSON from {path}") from e
        if not isinstance(data, dict):
            raise ResponseFormatError(f"Expected a JSON object from {path}")
        return data

    def upload_text_memo(self, item: TimelineItem) -> dict[str, Any]:
        payload = item.payload
        if not isinstance(payload, TextPayload):
            raise ClientError(f"Item {item.id} is not a text memo")

        logger.debug(f"Uploading text memo {item.id}")
        return self._request(
            "POST",
            self.TEXT_MEMO_PATH,
            json={
                "content": payload.content,
                "title": payload.title,
                "addToBook": item.add_to_book,
                "source": payload.source,
            },
        )

    def upload_voice_memo(self, item: TimelineItem) -> dict[str, Any]:
        payload = item.payload
        if not isinstance(payload, VoicePayload):
            raise ClientError(f"Item {item.id} is not a voice memo")

        audio_path = Path(payload.audio_path.removeprefix("file://"))
        try:
            audio = open(audio_path, "rb")
        except OSError as e:
            raise ClientError(f"Cannot read recording {audio_path}: {e}") from e

        logger.debug(f"Uploading voice memo {item.id} from {audio_path}")
        with audio:
            return self._request(
                "POST",
                self.VOICE_MEMO_PATH,
                files={"audio": ("recording.wav", audio, "audio/wav")},
                data={
                    "title": payload.title or DEFAULT_VOICE_TITLE,
                    "addToBook": str(item.add_to_book).lower(),
                    "source": payload.source,
                },
            )

    def submit_interview_answer(self, item: TimelineItem) -> dict[str, Any]:
        payload = item.payload
        if not isinstance(payload, InterviewAnswerPayload):
            raise ClientError(f"Item {item.id} is not an interview answer")

        logger.debug(
            f"Submitting answer for session {payload.session_id}, question {payload.question_id}"
        )
        return self._request(
            "POST",
            self.INTERVIEW_ANSWER_PATH,
            json={
                "sessionId": payload.session_id,
                "questionId": payload.question_id,
                "answer": payload.content,
                "answerType": payload.answer_type,
                "audioPath": payload.audio_path,
            },
        )

    def get_voice_memo_status(self, server_id: str) -> dict[str, Any]:
        return self._request("GET", self.MEMO_STATUS_PATH.format(server_id=server_id))

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()
