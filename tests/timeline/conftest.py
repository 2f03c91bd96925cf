"""Shared fixtures for timeline store tests."""

import asyncio
import threading
from datetime import datetime, timedelta, timezone

import pytest

from timeline.clients import UploadClient
from timeline.storage import MemoryStorage, StorageReadError, StorageWriteError
from timeline.store import StoreSettings, TimelineStore

START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeUploadClient(UploadClient):
    """Upload client returning queued results.

    Each operation pops from its own queue; an exception in the queue is
    raised. Empty queues fall back to a successful default response.
    """

    def __init__(self):
        self.results = {"text": [], "voice": [], "interview_answer": [], "status": []}
        self.calls: list[tuple[str, str]] = []
        self.gate: threading.Event | None = None
        self._counter = 0
        self._lock = threading.Lock()

    def queue(self, operation: str, *results) -> None:
        self.results[operation].extend(results)

    def hold(self) -> threading.Event:
        """Block uploads until the returned event is set."""
        self.gate = threading.Event()
        return self.gate

    def _next(self, operation: str, key: str, default):
        if self.gate is not None:
            self.gate.wait(timeout=5)
        with self._lock:
            self.calls.append((operation, key))
            queue = self.results[operation]
            queued = bool(queue)
            result = queue.pop(0) if queued else None
        # default() takes the lock again for the server id counter
        if not queued:
            result = default()
        if isinstance(result, BaseException):
            raise result
        return result

    def _server_id(self) -> str:
        with self._lock:
            self._counter += 1
            return f"srv-{self._counter}"

    def upload_text_memo(self, item):
        return self._next("text", item.id, lambda: {"id": self._server_id(), "status": "done"})

    def upload_voice_memo(self, item):
        return self._next(
            "voice",
            item.id,
            lambda: {"id": self._server_id(), "audioUrl": "https://cdn.example/a.wav"},
        )

    def submit_interview_answer(self, item):
        return self._next("interview_answer", item.id, lambda: {"id": self._server_id()})

    def get_voice_memo_status(self, server_id):
        return self._next("status", server_id, lambda: {"transcriptionStatus": "processing"})

    def calls_for(self, operation: str) -> list[str]:
        return [key for op, key in self.calls if op == operation]


class FailingStorage(MemoryStorage):
    """Memory storage whose reads and/or writes can be made to fail."""

    def __init__(self, fail_reads: bool = False, fail_writes: bool = False):
        super().__init__()
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes

    def get_item(self, key):
        if self.fail_reads:
            raise StorageReadError(f"cannot read {key}")
        return super().get_item(key)

    def set_item(self, key, value):
        if self.fail_writes:
            raise StorageWriteError(f"disk full writing {key}")
        super().set_item(key, value)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Yield to the loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


def fast_settings(**overrides) -> StoreSettings:
    values = dict(
        retry_interval=0.01,
        poll_interval=0.01,
        poll_error_delay=0.01,
        transcription_timeout=5.0,
    )
    values.update(overrides)
    return StoreSettings(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client():
    return FakeUploadClient()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def make_store(storage, client, clock):
    """Build stores sharing the test's storage, client and clock."""

    def factory(**kwargs):
        return TimelineStore(
            kwargs.pop("storage", storage),
            kwargs.pop("client", client),
            clock=kwargs.pop("clock", clock),
            settings=kwargs.pop("settings", None) or fast_settings(),
        )

    return factory


@pytest.fixture(name="wait_until")
def wait_until_fixture():
    return wait_until


@pytest.fixture
def settings():
    """Factory for fast StoreSettings with overrides."""
    return fast_settings


@pytest.fixture
def failing_storage():
    return FailingStorage
