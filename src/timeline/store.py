"""Optimistic timeline store.

Items written by the user (text memos, voice memos, interview answers) are
shown immediately under a temporary id, uploaded in the background, and
re-keyed to the server id once confirmed. Transient failures go to a retry
queue with exponential backoff. Items and retry queue are persisted after
every change and reloaded on start.

The store lives on one asyncio event loop. Upload client calls run in worker
threads via asyncio.to_thread, so uploads for different items interleave
while every state mutation runs to completion on the loop.

Usage:
    async with TimelineStore(storage, client) as store:
        store.subscribe(render)
        item = store.add_pending_item(TextPayload(content="hello"))
        await store.wait_idle()
"""

import asyncio
import json
import secrets
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any

from common.constants import (
    ITEMS_STORAGE_KEY,
    RETRY_QUEUE_STORAGE_KEY,
    TEMP_ID_PREFIX,
    TRANSCRIPTION_COMPLETED,
    TRANSCRIPTION_FAILED,
)
from common.env import env
from common.logger import get_logger

from .clients import UploadClient
from .errors import ResponseFormatError, UnsupportedItemTypeError, is_retryable
from .models import (
    InterviewAnswerPayload,
    ItemStatus,
    Payload,
    RetryQueueEntry,
    TextPayload,
    TimelineItem,
    TimelineState,
    TimelineStats,
    VoicePayload,
    format_timestamp,
    payload_from_dict,
    sort_newest_first,
)
from .storage import KeyValueStorage, StorageError

logger = get_logger(__name__)

Listener = Callable[[TimelineState], None]
Clock = Callable[[], datetime]

INTERRUPTED_STATUSES = (ItemStatus.PENDING, ItemStatus.UPLOADING)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StoreSettings:
    """Timing and retry configuration for a TimelineStore.

    Attributes:
        max_retries: Automatic retries allowed for transient failures
        retry_base_delay: Backoff base in seconds (delay = base * 2**retry_count)
        retry_interval: Seconds between retry queue passes
        poll_interval: Seconds between transcription status polls
        poll_error_delay: Seconds to wait after a failed poll
        transcription_timeout: Seconds before a transcription is given up on
            (0 polls without limit)
        items_key: Storage key for the item list
        retry_queue_key: Storage key for the retry queue
    """

    max_retries: int = 3
    retry_base_delay: float = 5.0
    retry_interval: float = 30.0
    poll_interval: float = 3.0
    poll_error_delay: float = 5.0
    transcription_timeout: float = 600.0
    items_key: str = ITEMS_STORAGE_KEY
    retry_queue_key: str = RETRY_QUEUE_STORAGE_KEY

    @classmethod
    def from_env(cls) -> "StoreSettings":
        """Build settings from TIMELINE_* environment variables."""
        return cls(
            max_retries=env.max_retries(),
            retry_base_delay=env.retry_base_delay(),
            retry_interval=env.retry_interval(),
            poll_interval=env.poll_interval(),
            poll_error_delay=env.poll_error_delay(),
            transcription_timeout=env.transcription_timeout(),
        )

    def backoff(self, retry_count: int) -> timedelta:
        """Delay before the next attempt for an item that failed retry_count times."""
        return timedelta(seconds=self.retry_base_delay * (2**retry_count))


class TimelineStore:
    """In-process state container for optimistic timeline items.

    All public methods must be called from the event loop the store was
    started on. add_pending_item, retry_item, delete_item and clear return
    immediately; their network work continues in tasks owned by the store
    and cancelled by close().
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        client: UploadClient,
        clock: Clock | None = None,
        settings: StoreSettings | None = None,
    ):
        """Initialize the store.

        Args:
            storage: Durable key-value storage for items and retry queue
            client: Upload API client
            clock: Returns the current aware datetime (defaults to UTC now)
            settings: Retry and polling configuration
        """
        self.storage = storage
        self.client = client
        self.clock = clock or utc_now
        self.settings = settings or StoreSettings()

        self.items: list[TimelineItem] = []
        self.retry_queue: list[RetryQueueEntry] = []
        self.is_initialized = False

        self._listeners: list[Listener] = []
        self._retry_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lifecycle

    async def start(self) -> None:
        """Load persisted state, notify subscribers and start the retry cycle.

        Read failures are logged and leave the store empty. Calling start on a
        running store does nothing.
        """
        if self._retry_task is not None:
            return

        self.load()
        self.is_initialized = True
        self._notify()

        queued = {entry.id for entry in self.retry_queue}
        for item in list(self.items):
            if item.status == ItemStatus.TRANSCRIBING and item.server_id:
                logger.info(f"Resuming transcription polling for {item.id}")
                self._spawn(self.poll_transcription(item.id, item.server_id))
            elif item.status in INTERRUPTED_STATUSES and item.id not in queued:
                # The previous process stopped before this upload finished
                logger.info(f"Resuming interrupted upload of {item.id}")
                self._spawn(self._upload_item(item))

        self._retry_task = asyncio.create_task(
            self._retry_cycle(), name="timeline-retry-cycle"
        )

    async def close(self) -> None:
        """Cancel the retry cycle and every in-flight upload and poll."""
        pending = list(self._tasks)
        if self._retry_task is not None:
            pending.append(self._retry_task)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
        self._retry_task = None

    async def wait_idle(self) -> None:
        """Wait until no upload or transcription poll is in flight."""
        while self._tasks:
            await asyncio.wait(list(self._tasks))

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Background task {task.get_name()} crashed: {error}",
                exc_info=(type(error), error, error.__traceback__),
            )

    # ------------------------------------------------------------------
    # Persistence

    def load(self) -> None:
        """Replace in-memory state with what storage holds.

        Unreadable values are logged and treated as empty; retry entries
        without a matching item are dropped.
        """
        try:
            raw_items = self.storage.get_item(self.settings.items_key)
            raw_queue = self.storage.get_item(self.settings.retry_queue_key)
        except StorageError as e:
            logger.error(f"Failed to load timeline state: {e}")
            return

        self.items = self._decode(raw_items, TimelineItem.from_dict, "item")
        queue = self._decode(raw_queue, RetryQueueEntry.from_dict, "retry entry")

        # The two keys are written separately, so drop entries whose item is gone
        known = {item.id for item in self.items}
        self.retry_queue = [entry for entry in queue if entry.id in known]
        dropped = len(queue) - len(self.retry_queue)
        if dropped:
            logger.warning(f"Dropped {dropped} retry entries with no matching item")

        logger.debug(
            f"Loaded {len(self.items)} items and {len(self.retry_queue)} retry entries"
        )

    @staticmethod
    def _decode(raw: str | None, build: Callable[[dict[str, Any]], Any], label: str) -> list:
        if not raw:
            return []
        try:
            records = json.loads(raw)
        except ValueError as e:
            logger.error(f"Stored {label} list is not valid JSON: {e}")
            return []
        if not isinstance(records, list):
            logger.error(f"Stored {label} list is not a JSON array")
            return []

        decoded = []
        seen: set[str] = set()
        for record in records:
            try:
                value = build(record)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping unreadable {label}: {e}")
                continue
            if value.id in seen:
                logger.warning(f"Skipping duplicate {label} {value.id}")
                continue
            seen.add(value.id)
            decoded.append(value)
        return decoded

    def _persist_items(self, raise_errors: bool = False) -> None:
        data = json.dumps([item.to_dict() for item in self.items])
        try:
            self.storage.set_item(self.settings.items_key, data)
        except StorageError as e:
            logger.error(f"Failed to persist items: {e}")
            if raise_errors:
                raise

    def _persist_retry_queue(self) -> None:
        data = json.dumps([entry.to_dict() for entry in self.retry_queue])
        try:
            self.storage.set_item(self.settings.retry_queue_key, data)
        except StorageError as e:
            logger.error(f"Failed to persist retry queue: {e}")

    # ------------------------------------------------------------------
    # Subscription

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener called with the full state after every change.

        Returns:
            Function that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        state = self.get_state()
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Timeline listener raised")

    # ------------------------------------------------------------------
    # Mutations

    def _timestamp(self) -> str:
        return format_timestamp(self.clock())

    def _new_temp_id(self) -> str:
        millis = int(self.clock().timestamp() * 1000)
        return f"{TEMP_ID_PREFIX}{millis}_{secrets.token_hex(4)}"

    def _index_of(self, item_id: str) -> int | None:
        for index, item in enumerate(self.items):
            if item.id == item_id:
                return index
        return None

    def _update_item(self, item_id: str, status: ItemStatus, **changes: Any) -> TimelineItem | None:
        """Set an item's status and fields by id, then persist and notify.

        Leaving error status clears the error fields. Missing ids are ignored.
        """
        index = self._index_of(item_id)
        if index is None:
            return None

        if status != ItemStatus.ERROR:
            changes.setdefault("error", None)
            changes.setdefault("will_retry", None)
        updated = replace(self.items[index], status=status, updated_at=self._timestamp(), **changes)
        self.items[index] = updated

        self._persist_items()
        self._notify()
        return updated

    def add_pending_item(
        self, payload: Payload | dict[str, Any], add_to_book: bool | None = None
    ) -> TimelineItem:
        """Insert an item optimistically and start uploading it.

        Must be called while the event loop is running.

        Args:
            payload: Payload variant, or a dict with a 'type' key and the
                kind's fields (snake_case or camelCase; may carry 'addToBook')
            add_to_book: Include the item in the compiled book (overrides the
                dict's flag)

        Returns:
            The new item, with a temporary id and pending status

        Raises:
            ValueError: If a dict payload has no type or lacks required fields
            StorageError: If the item could not be persisted. The item is still
                shown and uploaded.
        """
        if isinstance(payload, dict):
            if add_to_book is None:
                add_to_book = payload.get("addToBook", payload.get("add_to_book", False))
            payload = payload_from_dict(payload)

        now = self._timestamp()
        item = TimelineItem(
            id=self._new_temp_id(),
            payload=payload,
            status=ItemStatus.PENDING,
            add_to_book=bool(add_to_book),
            retry_count=0,
            created_at=now,
            updated_at=now,
        )
        self.items.append(item)

        try:
            self._persist_items(raise_errors=True)
        finally:
            self._notify()
            self._spawn(self._upload_item(item))

        logger.debug(f"Added pending {item.type} item {item.id}")
        return item

    def finalize_item(
        self,
        temp_id: str,
        server_data: dict[str, Any],
        default_status: ItemStatus = ItemStatus.DONE,
        **changes: Any,
    ) -> TimelineItem | None:
        """Merge a server confirmation into the item and re-key it.

        Args:
            temp_id: Current id of the item
            server_data: Server response; 'id' re-keys the item, 'status' sets
                its status when it names a known one
            default_status: Status used when the server reports none
            **changes: Extra item fields to set (e.g. server_id)

        Returns:
            The finalized item, or None if it no longer exists
        """
        index = self._index_of(temp_id)
        if index is None:
            logger.debug(f"Ignoring confirmation for missing item {temp_id}")
            return None

        new_id = str(server_data.get("id") or temp_id)
        status = ItemStatus.parse(server_data.get("status"), default_status)
        current = self.items[index]
        finalized = replace(
            current.with_server_fields(server_data),
            id=new_id,
            status=status,
            server_synced=True,
            updated_at=self._timestamp(),
            error=None if status != ItemStatus.ERROR else current.error,
            will_retry=None if status != ItemStatus.ERROR else current.will_retry,
            **changes,
        )
        self.items[index] = finalized

        if new_id != temp_id:
            # Ids stay unique: a stale copy already holding the server id goes
            before = len(self.items)
            self.items = [i for i in self.items if i.id != new_id or i is finalized]
            if len(self.items) != before:
                logger.warning(f"Replaced duplicate item {new_id}")

        self._persist_items()
        self._notify()
        logger.info(f"Item finalized: {new_id}")
        return finalized

    def handle_upload_failure(self, item: TimelineItem, error: BaseException) -> None:
        """Record a failed upload and schedule a retry when it is transient.

        Args:
            item: The item as it was sent (its retry_count is the attempts so far)
            error: The exception raised by the upload
        """
        current = self.get_item(item.id)
        if current is None:
            logger.debug(f"Upload failure for deleted item {item.id} ignored")
            return

        message = str(error) or error.__class__.__name__
        retry_count = max(item.retry_count, current.retry_count)

        if is_retryable(error) and retry_count < self.settings.max_retries:
            next_retry_at = self.clock() + self.settings.backoff(retry_count)
            entry = RetryQueueEntry(
                item=replace(item, retry_count=retry_count + 1),
                last_error=message,
                next_retry_at=format_timestamp(next_retry_at),
            )
            self.retry_queue = [e for e in self.retry_queue if e.id != item.id]
            self.retry_queue.append(entry)
            self._persist_retry_queue()

            self._update_item(
                item.id,
                ItemStatus.ERROR,
                error=message,
                will_retry=True,
                retry_count=entry.item.retry_count,
            )
            logger.info(
                f"Retry {entry.item.retry_count}/{self.settings.max_retries} for {item.id} "
                f"scheduled at {entry.next_retry_at}"
            )
        else:
            self._update_item(
                item.id,
                ItemStatus.ERROR,
                error=message,
                will_retry=False,
                retry_count=retry_count,
            )
            logger.warning(f"Upload of {item.id} failed permanently: {message}")

    def retry_item(self, item_id: str) -> bool:
        """Retry a failed item now, bypassing the retry queue.

        Returns:
            True if an upload was started, False if the item is missing or
            not in error status
        """
        index = self._index_of(item_id)
        if index is None or self.items[index].status != ItemStatus.ERROR:
            return False

        item = replace(self.items[index], retry_count=self.items[index].retry_count + 1)
        self.items[index] = item
        logger.info(f"Manual retry of {item_id} (attempt {item.retry_count})")
        self._spawn(self._upload_item(item))
        return True

    def retry_failed(self) -> int:
        """Manually retry every item in error status.

        Returns:
            Number of uploads started
        """
        failed = [item.id for item in self.items if item.status == ItemStatus.ERROR]
        return sum(1 for item_id in failed if self.retry_item(item_id))

    def delete_item(self, item_id: str) -> bool:
        """Remove an item and its retry entry.

        In-flight work for the item finishes without effect.

        Returns:
            True if anything was removed
        """
        items = [item for item in self.items if item.id != item_id]
        queue = [entry for entry in self.retry_queue if entry.id != item_id]
        if len(items) == len(self.items) and len(queue) == len(self.retry_queue):
            return False

        self.items = items
        self.retry_queue = queue
        self._persist_items()
        self._persist_retry_queue()
        self._notify()
        logger.debug(f"Deleted item {item_id}")
        return True

    def clear(self) -> None:
        """Remove every item and retry entry."""
        self.items = []
        self.retry_queue = []
        self._persist_items()
        self._persist_retry_queue()
        self._notify()

    # ------------------------------------------------------------------
    # Upload dispatch

    async def _dispatch(self, item: TimelineItem) -> dict[str, Any]:
        payload = item.payload
        if isinstance(payload, TextPayload):
            upload = self.client.upload_text_memo
        elif isinstance(payload, VoicePayload):
            upload = self.client.upload_voice_memo
        elif isinstance(payload, InterviewAnswerPayload):
            upload = self.client.submit_interview_answer
        else:
            raise UnsupportedItemTypeError(f"Unknown item type: {item.type}")

        result = await asyncio.to_thread(upload, item)
        if not isinstance(result, dict):
            raise ResponseFormatError(f"Unexpected upload response for {item.id}")
        if isinstance(payload, VoicePayload) and not result.get("id"):
            raise ResponseFormatError("Voice upload response has no id")
        return result

    async def _upload_item(self, item: TimelineItem) -> None:
        self._update_item(item.id, ItemStatus.UPLOADING)

        try:
            result = await self._dispatch(item)
        except Exception as e:
            logger.warning(f"Upload failed for {item.id}: {e}")
            self.handle_upload_failure(item, e)
            return

        if item.type == VoicePayload.type:
            # Voice items are done only once transcription completes
            server_id = str(result["id"])
            confirmed = {k: v for k, v in result.items() if k != "status"}
            finalized = self.finalize_item(
                item.id, confirmed, default_status=ItemStatus.TRANSCRIBING, server_id=server_id
            )
            if finalized is not None:
                self._spawn(self.poll_transcription(finalized.id, server_id))
        else:
            self.finalize_item(item.id, result)

    async def poll_transcription(self, item_id: str, server_id: str) -> None:
        """Poll a voice memo's transcription until it completes or fails.

        Poll errors are treated as transient. Polling stops when the item is
        deleted, and gives up with an error once transcription_timeout passes.
        """
        loop = asyncio.get_running_loop()
        timeout = self.settings.transcription_timeout
        deadline = loop.time() + timeout if timeout > 0 else None

        while True:
            if self.get_item(item_id) is None:
                logger.debug(f"Stopped polling {server_id}: item deleted")
                return
            if deadline is not None and loop.time() >= deadline:
                self._update_item(
                    item_id, ItemStatus.ERROR, error="Transcription timed out", will_retry=False
                )
                logger.warning(f"Transcription of {server_id} timed out")
                return

            try:
                data = await asyncio.to_thread(self.client.get_voice_memo_status, server_id)
            except Exception as e:
                logger.warning(f"Transcription polling error for {server_id}: {e}")
                await asyncio.sleep(self.settings.poll_error_delay)
                continue

            status = data.get("transcriptionStatus")
            if status == TRANSCRIPTION_COMPLETED:
                self._update_item(
                    item_id,
                    ItemStatus.DONE,
                    transcript=data.get("transcript"),
                    transcription_complete=True,
                )
                logger.info(f"Transcription complete for {item_id}")
                return
            if status == TRANSCRIPTION_FAILED:
                self._update_item(
                    item_id, ItemStatus.ERROR, error="Transcription failed", will_retry=False
                )
                return

            await asyncio.sleep(self.settings.poll_interval)

    # ------------------------------------------------------------------
    # Retry queue

    def process_retry_queue(self) -> list[str]:
        """Re-dispatch every retry entry whose deadline has passed.

        Returns:
            Ids of the items whose upload was restarted
        """
        now = self.clock()
        due = [entry for entry in self.retry_queue if entry.is_due(now)]
        if not due:
            return []

        due_ids = {entry.id for entry in due}
        self.retry_queue = [entry for entry in self.retry_queue if entry.id not in due_ids]
        self._persist_retry_queue()

        restarted = []
        for entry in due:
            index = self._index_of(entry.id)
            if index is None:
                continue
            self.items[index] = entry.item
            self._persist_items()
            self._notify()

            logger.info(f"Retrying {entry.id} (attempt {entry.item.retry_count})")
            self._spawn(self._upload_item(entry.item))
            restarted.append(entry.id)
        return restarted

    def next_retry_at(self) -> datetime | None:
        """Earliest deadline in the retry queue, or None when it is empty."""
        if not self.retry_queue:
            return None
        return min(entry.next_retry_at_dt for entry in self.retry_queue)

    async def _retry_cycle(self) -> None:
        while True:
            try:
                self.process_retry_queue()
            except Exception:
                logger.exception("Retry queue pass failed")
            await asyncio.sleep(self.settings.retry_interval)

    # ------------------------------------------------------------------
    # Queries

    def get_state(self) -> TimelineState:
        return TimelineState(
            items=sort_newest_first(self.items),
            retry_queue=list(self.retry_queue),
            is_initialized=self.is_initialized,
        )

    def get_item(self, item_id: str) -> TimelineItem | None:
        index = self._index_of(item_id)
        return self.items[index] if index is not None else None

    def get_items(
        self,
        type: str | None = None,
        status: ItemStatus | str | None = None,
        add_to_book: bool | None = None,
    ) -> list[TimelineItem]:
        """Items matching every given filter, newest first."""
        items = self.items
        if type is not None:
            items = [item for item in items if item.type == type]
        if status is not None:
            wanted = status.value if isinstance(status, ItemStatus) else status
            items = [item for item in items if item.status.value == wanted]
        if add_to_book is not None:
            items = [item for item in items if item.add_to_book == add_to_book]
        return sort_newest_first(items)

    def get_stats(self) -> TimelineStats:
        counts = {status: 0 for status in ItemStatus}
        for item in self.items:
            counts[item.status] += 1
        return TimelineStats(
            total=len(self.items),
            pending=counts[ItemStatus.PENDING],
            uploading=counts[ItemStatus.UPLOADING],
            transcribing=counts[ItemStatus.TRANSCRIBING],
            done=counts[ItemStatus.DONE],
            errors=counts[ItemStatus.ERROR],
            in_book=sum(1 for item in self.items if item.add_to_book),
            retry_queue_size=len(self.retry_queue),
        )
