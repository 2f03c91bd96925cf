"""Upload API clients used by the timeline store."""

from .base import UploadClient
from .memo_api import MemoAPIClient

__all__ = ["MemoAPIClient", "UploadClient"]
