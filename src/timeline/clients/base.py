"""Abstract base class for upload API clients."""

from abc import ABC, abstractmethod
from typing import Any

from timeline.models import TimelineItem


class UploadClient(ABC):
    """Operations the timeline store needs from the upload API.

    Implementations are synchronous; the store runs them off the event loop.
    Failures must be raised as UploadError subclasses so the store can tell
    transient failures from terminal ones.
    """

    @abstractmethod
    def upload_text_memo(self, item: TimelineItem) -> dict[str, Any]:
        """Submit a text memo.

        Args:
            item: Item whose payload is a TextPayload

        Returns:
            Server response, normally containing 'id' and 'status'

        Raises:
            UploadError: If the upload fails
        """
        pass

    @abstractmethod
    def upload_voice_memo(self, item: TimelineItem) -> dict[str, Any]:
        """Submit a voice memo recording.

        Args:
            item: Item whose payload is a VoicePayload

        Returns:
            Server response containing 'id' and 'audioUrl'

        Raises:
            UploadError: If the upload fails
        """
        pass

    @abstractmethod
    def submit_interview_answer(self, item: TimelineItem) -> dict[str, Any]:
        """Submit an interview answer.

        Args:
            item: Item whose payload is an InterviewAnswerPayload

        Returns:
            Server response containing 'id'

        Raises:
            UploadError: If the upload fails
        """
        pass

    @abstractmethod
    def get_voice_memo_status(self, server_id: str) -> dict[str, Any]:
        """Query the transcription status of an uploaded voice memo.

        Args:
            server_id: Server-issued memo id

        Returns:
            Response with 'transcriptionStatus' ('completed', 'failed' or an
            in-progress value) and 'transcript' once completed

        Raises:
            UploadError: If the request fails
        """
        pass

    def close(self) -> None:
        """Release client resources."""
        pass

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
        return False
