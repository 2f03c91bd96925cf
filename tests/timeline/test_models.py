"""Tests for timeline item models and their persisted layout."""

from datetime import datetime, timezone

import pytest

from timeline.models import (
    InterviewAnswerPayload,
    ItemStatus,
    RetryQueueEntry,
    TextPayload,
    TimelineItem,
    TimelineStats,
    UnknownPayload,
    VoicePayload,
    format_timestamp,
    parse_timestamp,
    payload_from_dict,
    payload_to_dict,
    sort_newest_first,
)


def make_item(**overrides):
    values = dict(
        id="temp_1",
        payload=TextPayload(content="hello"),
        created_at="2024-01-01T12:00:00.000Z",
        updated_at="2024-01-01T12:00:00.000Z",
    )
    values.update(overrides)
    return TimelineItem(**values)


class TestTimestamps:
    """Tests for timestamp formatting and parsing."""

    def test_format_uses_millis_and_z(self):
        moment = datetime(2024, 3, 5, 8, 9, 10, 123456, tzinfo=timezone.utc)
        assert format_timestamp(moment) == "2024-03-05T08:09:10.123Z"

    def test_naive_datetime_treated_as_utc(self):
        assert format_timestamp(datetime(2024, 1, 1)) == "2024-01-01T00:00:00.000Z"

    def test_parse_z_suffix(self):
        parsed = parse_timestamp("2024-01-01T12:00:05.000Z")
        assert parsed == datetime(2024, 1, 1, 12, 0, 5, tzinfo=timezone.utc)

    def test_parse_offset(self):
        parsed = parse_timestamp("2024-01-01T14:00:00+02:00")
        assert parsed == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestPayloads:
    """Tests for payload variants."""

    def test_camel_and_snake_keys_accepted(self):
        camel = payload_from_dict({"type": "voice", "audioPath": "/a.wav", "durationMs": 900})
        snake = payload_from_dict({"type": "voice", "audio_path": "/a.wav", "duration_ms": 900})
        assert camel == snake == VoicePayload(audio_path="/a.wav", duration_ms=900)

    def test_interview_answer_defaults(self):
        payload = payload_from_dict({"type": "interview_answer", "sessionId": "s", "questionId": "q"})
        assert payload == InterviewAnswerPayload(session_id="s", question_id="q")
        assert payload.answer_type == "text"

    def test_missing_type(self):
        with pytest.raises(ValueError, match="type"):
            payload_from_dict({"content": "x"})

    def test_missing_required_field(self):
        with pytest.raises(ValueError, match="Invalid text payload"):
            payload_from_dict({"type": "text"})

    def test_unknown_kind_kept(self):
        payload = payload_from_dict({"type": "photo", "uri": "a.jpg", "status": "pending"})
        assert payload == UnknownPayload(type="photo", fields={"uri": "a.jpg"})
        assert payload_to_dict(payload) == {"type": "photo", "uri": "a.jpg"}

    def test_to_dict_uses_camel_case(self):
        data = payload_to_dict(InterviewAnswerPayload(session_id="s", question_id="q"))
        assert data["sessionId"] == "s"
        assert data["answerType"] == "text"
        assert data["type"] == "interview_answer"


class TestTimelineItem:
    """Tests for TimelineItem serialization."""

    def test_to_dict_is_flat(self):
        data = make_item(add_to_book=True).to_dict()
        assert data == {
            "id": "temp_1",
            "type": "text",
            "content": "hello",
            "title": None,
            "source": "quick_memory",
            "status": "pending",
            "addToBook": True,
            "retryCount": 0,
            "createdAt": "2024-01-01T12:00:00.000Z",
            "updatedAt": "2024-01-01T12:00:00.000Z",
            "serverSynced": False,
        }

    def test_error_fields_only_in_error_status(self):
        failed = make_item(status=ItemStatus.ERROR, error="offline", will_retry=True)
        assert failed.to_dict()["error"] == "offline"
        assert failed.to_dict()["willRetry"] is True

        stale = make_item(status=ItemStatus.DONE, error="offline", will_retry=True)
        assert "error" not in stale.to_dict()
        assert "willRetry" not in stale.to_dict()

    def test_round_trip_keeps_server_fields(self):
        item = make_item(
            id="srv-1",
            payload=VoicePayload(audio_path="/a.wav"),
            status=ItemStatus.DONE,
            server_synced=True,
            server_id="srv-1",
            audio_url="https://cdn/a.wav",
            transcript="hi",
            transcription_complete=True,
            server_data={"bookChapter": 4},
        )
        assert TimelineItem.from_dict(item.to_dict()) == item

    def test_from_dict_requires_id(self):
        with pytest.raises(ValueError):
            TimelineItem.from_dict({"type": "text", "content": "x", "status": "pending"})

    def test_from_dict_drops_error_outside_error_status(self):
        data = make_item().to_dict()
        data["error"] = "old"
        assert TimelineItem.from_dict(data).error is None

    def test_with_server_fields(self):
        merged = make_item().with_server_fields(
            {"id": "srv-1", "status": "done", "audioUrl": "u", "content": "hello", "mood": "happy"}
        )
        assert merged.audio_url == "u"
        assert merged.server_data == {"mood": "happy"}
        assert merged.id == "temp_1"

    def test_with_server_fields_updates_payload(self):
        merged = make_item().with_server_fields({"title": "Server title", "content": "edited"})
        assert merged.payload == TextPayload(content="edited", title="Server title")
        assert merged.server_data == {}
        assert merged.to_dict()["title"] == "Server title"

    def test_with_server_fields_unknown_payload(self):
        item = make_item(payload=UnknownPayload(type="photo", fields={"uri": "a.jpg"}))
        merged = item.with_server_fields({"uri": "https://cdn/a.jpg", "width": 640})
        assert merged.payload.fields == {"uri": "https://cdn/a.jpg"}
        assert merged.server_data == {"width": 640}

    @pytest.mark.parametrize("key", ["createdAt", "updatedAt"])
    def test_from_dict_rejects_bad_timestamp(self, key):
        data = make_item().to_dict()
        data[key] = "garbage"
        with pytest.raises(ValueError):
            TimelineItem.from_dict(data)


class TestRetryQueueEntry:
    """Tests for retry queue entries."""

    def test_flat_layout_round_trip(self):
        entry = RetryQueueEntry(
            item=make_item(status=ItemStatus.ERROR, error="offline", will_retry=True, retry_count=1),
            last_error="offline",
            next_retry_at="2024-01-01T12:00:05.000Z",
        )
        data = entry.to_dict()
        assert data["id"] == "temp_1"
        assert data["retryCount"] == 1
        assert data["nextRetryAt"] == "2024-01-01T12:00:05.000Z"
        assert RetryQueueEntry.from_dict(data) == entry

    def test_from_dict_rejects_bad_deadline(self):
        data = dict(make_item().to_dict(), lastError="x", nextRetryAt="soon")
        with pytest.raises(ValueError):
            RetryQueueEntry.from_dict(data)

    def test_is_due(self):
        entry = RetryQueueEntry(
            item=make_item(), last_error="x", next_retry_at="2024-01-01T12:00:05.000Z"
        )
        assert not entry.is_due(datetime(2024, 1, 1, 12, 0, 4, tzinfo=timezone.utc))
        assert entry.is_due(datetime(2024, 1, 1, 12, 0, 5, tzinfo=timezone.utc))


class TestHelpers:
    """Tests for ordering, stats and status parsing."""

    def test_sort_newest_first(self):
        old = make_item(id="old", created_at="2024-01-01T12:00:00.000Z")
        new = make_item(id="new", created_at="2024-01-02T12:00:00.000Z")
        assert [i.id for i in sort_newest_first([old, new])] == ["new", "old"]

    def test_status_parse(self):
        assert ItemStatus.parse("transcribing", ItemStatus.DONE) == ItemStatus.TRANSCRIBING
        assert ItemStatus.parse("archived", ItemStatus.DONE) == ItemStatus.DONE
        assert ItemStatus.parse(None, ItemStatus.DONE) == ItemStatus.DONE

    def test_stats_as_dict(self):
        stats = TimelineStats(
            total=3, pending=1, uploading=0, transcribing=0, done=1, errors=1,
            in_book=2, retry_queue_size=1,
        )
        assert stats.as_dict()["inBook"] == 2
        assert stats.as_dict()["retryQueueSize"] == 1
