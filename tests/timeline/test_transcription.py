"""Tests for voice uploads and transcription polling."""

import asyncio

from timeline.models import ItemStatus, VoicePayload

PROCESSING = {"transcriptionStatus": "processing"}


def run(coro):
    return asyncio.run(coro)


class TestVoiceUpload:
    """Tests for the voice upload and polling lifecycle."""

    def test_voice_item_transcribed(self, make_store, client):
        client.queue(
            "status",
            PROCESSING,
            {"transcriptionStatus": "completed", "transcript": "Once upon a time"},
        )

        async def scenario():
            async with make_store() as store:
                statuses = []
                store.subscribe(lambda state: statuses.append(state.items[0].status))
                store.add_pending_item(VoicePayload(audio_path="/tmp/rec.wav", title="Grandma"))
                await store.wait_idle()
                return store.items[0], statuses

        item, statuses = run(scenario())
        assert item.id == "srv-1"
        assert item.server_id == "srv-1"
        assert item.status == ItemStatus.DONE
        assert item.transcript == "Once upon a time"
        assert item.transcription_complete is True
        assert item.audio_url == "https://cdn.example/a.wav"
        assert statuses[:3] == [ItemStatus.PENDING, ItemStatus.UPLOADING, ItemStatus.TRANSCRIBING]
        assert statuses[-1] == ItemStatus.DONE
        assert client.calls_for("status") == ["srv-1", "srv-1"]

    def test_server_status_ignored_until_transcribed(self, make_store, client, wait_until):
        client.queue("voice", {"id": "v1", "status": "done"})

        async def scenario():
            async with make_store() as store:
                store.add_pending_item(VoicePayload(audio_path="/tmp/rec.wav"))
                await wait_until(lambda: store.items[0].id == "v1")
                status = store.items[0].status
                client.queue("status", {"transcriptionStatus": "completed"})
                await store.wait_idle()
                return status

        assert run(scenario()) == ItemStatus.TRANSCRIBING

    def test_transcription_failed(self, make_store, client):
        client.queue("status", {"transcriptionStatus": "failed"})

        async def scenario():
            async with make_store() as store:
                store.add_pending_item(VoicePayload(audio_path="/tmp/rec.wav"))
                await store.wait_idle()
                return store.items[0], store.retry_queue

        item, queue = run(scenario())
        assert item.status == ItemStatus.ERROR
        assert item.error == "Transcription failed"
        assert item.will_retry is False
        assert queue == []

    def test_poll_errors_are_transient(self, make_store, client):
        client.queue(
            "status",
            RuntimeError("status endpoint unavailable"),
            {"transcriptionStatus": "completed", "transcript": "hi"},
        )

        async def scenario():
            async with make_store() as store:
                store.add_pending_item(VoicePayload(audio_path="/tmp/rec.wav"))
                await store.wait_idle()
                return store.items[0]

        item = run(scenario())
        assert item.status == ItemStatus.DONE
        assert item.transcript == "hi"
        assert len(client.calls_for("status")) == 2

    def test_transcription_times_out(self, make_store, client, settings):
        async def scenario():
            async with make_store(settings=settings(transcription_timeout=0.05)) as store:
                store.add_pending_item(VoicePayload(audio_path="/tmp/rec.wav"))
                await store.wait_idle()
                return store.items[0]

        item = run(scenario())
        assert item.status == ItemStatus.ERROR
        assert item.error == "Transcription timed out"
        assert item.will_retry is False

    def test_response_without_id_fails(self, make_store, client):
        client.queue("voice", {"audioUrl": "https://cdn.example/a.wav"})

        async def scenario():
            async with make_store() as store:
                item = store.add_pending_item(VoicePayload(audio_path="/tmp/rec.wav"))
                await store.wait_idle()
                return store.get_item(item.id)

        item = run(scenario())
        assert item.status == ItemStatus.ERROR
        assert item.error == "Voice upload response has no id"
        assert item.will_retry is False
        assert client.calls_for("status") == []

    def test_deleting_item_stops_polling(self, make_store, client, wait_until):
        async def scenario():
            async with make_store() as store:
                store.add_pending_item(VoicePayload(audio_path="/tmp/rec.wav"))
                await wait_until(lambda: client.calls_for("status"))
                store.delete_item("srv-1")
                await store.wait_idle()
                return store.items

        assert run(scenario()) == []
