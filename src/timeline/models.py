"""Data models for the optimistic timeline store.

Items are stored as a tagged union: the ``type`` discriminant lives on the
payload variant (text, voice, interview answer). Everything is serialized to
flat camelCase JSON objects, which is the layout written to durable storage.
"""

from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar

from common.constants import DEFAULT_SOURCE


class ItemType(str, Enum):
    """Upload kinds understood by the store."""

    TEXT = "text"
    VOICE = "voice"
    INTERVIEW_ANSWER = "interview_answer"


class ItemStatus(str, Enum):
    """Lifecycle of a timeline item.

    pending -> uploading -> (transcribing) -> done, or error.
    """

    PENDING = "pending"
    UPLOADING = "uploading"
    TRANSCRIBING = "transcribing"
    DONE = "done"
    ERROR = "error"

    @classmethod
    def parse(cls, value: Any, default: "ItemStatus") -> "ItemStatus":
        """Return the status named by value, or default when it is not one."""
        try:
            return cls(value)
        except ValueError:
            return default


def format_timestamp(moment: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with millisecond precision."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    text = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _lookup(data: dict[str, Any], name: str, default: Any = None) -> Any:
    """Read a field given in either snake_case or camelCase."""
    if name in data:
        return data[name]
    return data.get(_camel(name), default)


@dataclass(frozen=True)
class TextPayload:
    """A typed memory."""

    type: ClassVar[str] = ItemType.TEXT.value

    content: str
    title: str | None = None
    source: str = DEFAULT_SOURCE


@dataclass(frozen=True)
class VoicePayload:
    """A recorded memory; audio_path points at the local recording."""

    type: ClassVar[str] = ItemType.VOICE.value

    audio_path: str
    title: str | None = None
    source: str = DEFAULT_SOURCE
    duration_ms: int | None = None


@dataclass(frozen=True)
class InterviewAnswerPayload:
    """An answer to one question of a guided interview session."""

    type: ClassVar[str] = ItemType.INTERVIEW_ANSWER.value

    session_id: str
    question_id: str
    content: str = ""
    answer_type: str = "text"
    audio_path: str | None = None


@dataclass(frozen=True)
class UnknownPayload:
    """Payload of a kind this build cannot upload.

    Kept so that such items still load, display and fail cleanly at dispatch.
    """

    type: str
    fields: dict[str, Any] = field(default_factory=dict)


Payload = TextPayload | VoicePayload | InterviewAnswerPayload | UnknownPayload

PAYLOAD_TYPES: dict[str, type] = {
    ItemType.TEXT.value: TextPayload,
    ItemType.VOICE.value: VoicePayload,
    ItemType.INTERVIEW_ANSWER.value: InterviewAnswerPayload,
}

# Keys owned by TimelineItem itself; everything else in a stored object is
# either payload or server data.
_ITEM_KEYS = {
    "id",
    "type",
    "status",
    "addToBook",
    "retryCount",
    "createdAt",
    "updatedAt",
    "serverSynced",
    "error",
    "willRetry",
    "serverId",
    "audioUrl",
    "transcript",
    "transcriptionComplete",
}


def payload_from_dict(data: dict[str, Any]) -> Payload:
    """Build the payload variant named by data['type'].

    Field names may be snake_case or camelCase. Unrecognized kinds produce
    an UnknownPayload holding the remaining fields.

    Raises:
        ValueError: If 'type' is missing or a required field is absent
    """
    kind = data.get("type")
    if not kind:
        raise ValueError("Item payload must include a 'type'")

    payload_cls = PAYLOAD_TYPES.get(kind)
    if payload_cls is None:
        extra = {k: v for k, v in data.items() if k not in _ITEM_KEYS}
        return UnknownPayload(type=kind, fields=extra)

    kwargs = {}
    for attr in fields(payload_cls):
        value = _lookup(data, attr.name)
        if value is not None:
            kwargs[attr.name] = value
    try:
        return payload_cls(**kwargs)
    except TypeError as e:
        raise ValueError(f"Invalid {kind} payload: {e}") from e


def payload_to_dict(payload: Payload) -> dict[str, Any]:
    """Serialize a payload to camelCase keys, including its type."""
    if isinstance(payload, UnknownPayload):
        return {**payload.fields, "type": payload.type}
    data = {_camel(name): value for name, value in asdict(payload).items()}
    data["type"] = payload.type
    return data


def _payload_field_names(payload: Payload) -> dict[str, str]:
    """Map the camelCase keys of a payload to its attribute names."""
    if isinstance(payload, UnknownPayload):
        return {key: key for key in payload.fields}
    return {_camel(attr.name): attr.name for attr in fields(payload)}


@dataclass(frozen=True)
class TimelineItem:
    """A user-authored item as shown on the timeline.

    Temporary items carry an id starting with ``temp_`` until the server
    confirms them. ``error`` and ``will_retry`` are only set in error status.
    """

    id: str
    payload: Payload
    status: ItemStatus = ItemStatus.PENDING
    add_to_book: bool = False
    retry_count: int = 0
    created_at: str = ""
    updated_at: str = ""
    server_synced: bool = False
    error: str | None = None
    will_retry: bool | None = None
    server_id: str | None = None
    audio_url: str | None = None
    transcript: str | None = None
    transcription_complete: bool = False
    server_data: dict[str, Any] = field(default_factory=dict)

    @property
    def type(self) -> str:
        return self.payload.type

    @property
    def created_at_dt(self) -> datetime:
        return parse_timestamp(self.created_at)

    def with_server_fields(self, data: dict[str, Any]) -> "TimelineItem":
        """Return a copy with server-returned fields merged in.

        Fields the item models directly (audio URL, transcript) are mapped
        onto it, payload fields (title, content, ...) replace the payload's
        values and the rest is kept in server_data. id and status are left
        to the caller.
        """
        extra = dict(self.server_data)
        payload_names = _payload_field_names(self.payload)
        payload_changes: dict[str, Any] = {}
        changes: dict[str, Any] = {}
        for key, value in data.items():
            if key == "audioUrl":
                changes["audio_url"] = value
            elif key == "transcript":
                changes["transcript"] = value
            elif key in _ITEM_KEYS:
                continue
            elif key in payload_names:
                payload_changes[payload_names[key]] = value
            else:
                extra[key] = value

        if payload_changes:
            if isinstance(self.payload, UnknownPayload):
                merged = {**self.payload.fields, **payload_changes}
                changes["payload"] = replace(self.payload, fields=merged)
            else:
                changes["payload"] = replace(self.payload, **payload_changes)
        return replace(self, server_data=extra, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the flat camelCase layout used for persistence."""
        data: dict[str, Any] = dict(self.server_data)
        data.update(payload_to_dict(self.payload))
        data.update(
            {
                "id": self.id,
                "type": self.type,
                "status": self.status.value,
                "addToBook": self.add_to_book,
                "retryCount": self.retry_count,
                "createdAt": self.created_at,
                "updatedAt": self.updated_at,
                "serverSynced": self.server_synced,
            }
        )
        if self.status == ItemStatus.ERROR:
            data["error"] = self.error
            data["willRetry"] = bool(self.will_retry)
        optional = {
            "serverId": self.server_id,
            "audioUrl": self.audio_url,
            "transcript": self.transcript,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        if self.transcription_complete:
            data["transcriptionComplete"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TimelineItem":
        """Rebuild an item from its persisted form.

        Raises:
            ValueError: If the object lacks an id, a valid type/status or
                parseable timestamps
            KeyError: If a required core field is missing
        """
        if not data.get("id"):
            raise ValueError("Timeline item is missing an id")
        payload = payload_from_dict(data)
        payload_keys = set(payload_to_dict(payload))
        server_data = {
            k: v for k, v in data.items() if k not in _ITEM_KEYS and k not in payload_keys
        }
        status = ItemStatus(data["status"])
        parse_timestamp(data["createdAt"])
        if data.get("updatedAt"):
            parse_timestamp(data["updatedAt"])
        return cls(
            id=str(data["id"]),
            payload=payload,
            status=status,
            add_to_book=bool(data.get("addToBook", False)),
            retry_count=int(data.get("retryCount") or 0),
            created_at=data["createdAt"],
            updated_at=data.get("updatedAt") or data["createdAt"],
            server_synced=bool(data.get("serverSynced", False)),
            error=data.get("error") if status == ItemStatus.ERROR else None,
            will_retry=data.get("willRetry") if status == ItemStatus.ERROR else None,
            server_id=data.get("serverId"),
            audio_url=data.get("audioUrl"),
            transcript=data.get("transcript"),
            transcription_complete=bool(data.get("transcriptionComplete", False)),
            server_data=server_data,
        )


@dataclass(frozen=True)
class RetryQueueEntry:
    """A failed item waiting for a scheduled re-attempt.

    ``item`` already carries the incremented retry count.
    """

    item: TimelineItem
    last_error: str
    next_retry_at: str

    @property
    def id(self) -> str:
        return self.item.id

    @property
    def next_retry_at_dt(self) -> datetime:
        return parse_timestamp(self.next_retry_at)

    def is_due(self, now: datetime) -> bool:
        return self.next_retry_at_dt <= now

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.item.to_dict(),
            "lastError": self.last_error,
            "nextRetryAt": self.next_retry_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RetryQueueEntry":
        item_data = {k: v for k, v in data.items() if k not in ("lastError", "nextRetryAt")}
        parse_timestamp(data["nextRetryAt"])
        return cls(
            item=TimelineItem.from_dict(item_data),
            last_error=str(data.get("lastError", "")),
            next_retry_at=data["nextRetryAt"],
        )


@dataclass(frozen=True)
class TimelineState:
    """Snapshot handed to subscribers after every mutation."""

    items: list[TimelineItem]
    retry_queue: list[RetryQueueEntry]
    is_initialized: bool


@dataclass(frozen=True)
class TimelineStats:
    """Counts per status plus book and retry queue totals."""

    total: int
    pending: int
    uploading: int
    transcribing: int
    done: int
    errors: int
    in_book: int
    retry_queue_size: int

    def as_dict(self) -> dict[str, int]:
        return {_camel(k): v for k, v in asdict(self).items()}


def sort_newest_first(items: list[TimelineItem]) -> list[TimelineItem]:
    """Return items ordered by created_at, newest first."""
    return sorted(items, key=lambda item: item.created_at_dt, reverse=True)


__all__ = [
    "InterviewAnswerPayload",
    "ItemStatus",
    "ItemType",
    "Payload",
    "RetryQueueEntry",
    "TextPayload",
    "TimelineItem",
    "TimelineState",
    "TimelineStats",
    "UnknownPayload",
    "VoicePayload",
    "format_timestamp",
    "parse_timestamp",
    "payload_from_dict",
    "payload_to_dict",
    "sort_newest_first",
]
