import asyncio

import pytest

from salesvoice.core.models import TranscriptEvent
from salesvoice.core.transcription_bridge import TranscriptionBridge
from salesvoice.errors import TranscriptionStreamError
from salesvoice.pipelines.base import STTComponent


class _FakeSTT(STTComponent):
    """Consumes all audio, then replays scripted events (optionally failing)."""

    component_key = "fake_stt"

    def __init__(self, events=(), error=None):
        self.events = list(events)
        self.error = error
        self.received = []
        self.streams = 0

    async def stream_transcripts(self, call_id, audio_chunks, options=None):
        self.streams += 1
        async for chunk in audio_chunks:
            self.received.append(chunk)
        for event in self.events:
            yield event
        if self.error is not None:
            raise self.error


class _HangingSTT(STTComponent):
    """Never finishes on its own; records teardown."""

    component_key = "hanging_stt"

    def __init__(self):
        self.closed = 0

    async def stream_transcripts(self, call_id, audio_chunks, options=None):
        try:
            await asyncio.Event().wait()
            yield TranscriptEvent("never", True, 1)
        finally:
            self.closed += 1


def _bridge(stt, **kwargs):
    transcripts = []
    failures = []

    async def on_transcript(text):
        transcripts.append(text)

    async def on_failure(exc):
        failures.append(exc)

    bridge = TranscriptionBridge("conn-1", stt, on_transcript=on_transcript, on_failure=on_failure, **kwargs)
    return bridge, transcripts, failures


@pytest.mark.asyncio
async def test_partial_then_final_emits_one_transcript():
    stt = _FakeSTT(
        [
            TranscriptEvent("this chair", is_final=False, sequence=1),
            TranscriptEvent("this chair is solid oak", is_final=True, sequence=2),
        ]
    )
    bridge, transcripts, failures = _bridge(stt)

    await bridge.start()
    bridge.feed(b"\x00\x01" * 160)
    bridge.feed(b"")
    bridge.feed(b"\x02\x03" * 160)
    await bridge.stop()

    assert transcripts == ["this chair is solid oak"]
    assert failures == []
    assert stt.received == [b"\x00\x01" * 160, b"\x02\x03" * 160]
    assert bridge.is_active is False


@pytest.mark.asyncio
async def test_stale_and_empty_finals_are_dropped():
    stt = _FakeSTT(
        [
            TranscriptEvent("first", is_final=True, sequence=3),
            TranscriptEvent("first", is_final=True, sequence=3),
            TranscriptEvent("older", is_final=True, sequence=2),
            TranscriptEvent("   ", is_final=True, sequence=4),
            TranscriptEvent("second", is_final=True, sequence=5),
        ]
    )
    bridge, transcripts, _ = _bridge(stt)

    await bridge.start()
    await bridge.stop()

    assert transcripts == ["first", "second"]


@pytest.mark.asyncio
async def test_service_failure_reported_exactly_once():
    stt = _FakeSTT([TranscriptEvent("hello", True, 1)], error=TranscriptionStreamError("stream reset"))
    bridge, transcripts, failures = _bridge(stt)

    await bridge.start()
    await bridge.stop()

    assert transcripts == ["hello"]
    assert len(failures) == 1
    assert "stream reset" in str(failures[0])
    assert bridge.is_active is False


@pytest.mark.asyncio
async def test_unexpected_error_is_wrapped_as_stream_error():
    bridge, _, failures = _bridge(_FakeSTT(error=RuntimeError("decoder crashed")))

    await bridge.start()
    await bridge.stop()

    assert len(failures) == 1
    assert isinstance(failures[0], TranscriptionStreamError)
    assert isinstance(failures[0].__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_feed_without_active_stream_is_noop():
    stt = _FakeSTT()
    bridge, _, _ = _bridge(stt)

    bridge.feed(b"ignored")
    await bridge.stop()

    assert stt.streams == 0
    assert bridge.is_active is False


@pytest.mark.asyncio
async def test_restart_tears_down_previous_stream():
    stt = _HangingSTT()
    bridge, _, _ = _bridge(stt)

    await bridge.start()
    await asyncio.sleep(0)
    await bridge.start()
    await asyncio.sleep(0)

    assert stt.closed == 1
    assert bridge.is_active is True

    await bridge.close()
    assert stt.closed == 2
    assert bridge.is_active is False


@pytest.mark.asyncio
async def test_stop_gives_up_after_timeout():
    stt = _HangingSTT()
    bridge, _, failures = _bridge(stt, stop_timeout_sec=0.05)

    await bridge.start()
    await asyncio.sleep(0)
    await bridge.stop()

    assert bridge.is_active is False
    assert stt.closed == 1
    assert failures == []
