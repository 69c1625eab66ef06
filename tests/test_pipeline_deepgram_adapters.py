import asyncio
import json
from urllib.parse import parse_qs, urlparse

import pytest
from websockets.exceptions import ConnectionClosedError

from salesvoice.config import DeepgramConfig
from salesvoice.errors import TranscriptionStreamError
from salesvoice.pipelines.deepgram import CLOSE_STREAM_MESSAGE, DeepgramSTTAdapter


class _MockWebSocket:
    """Replays server messages once the client has sent CloseStream."""

    def __init__(self, messages=(), close_error=None):
        self.sent = []
        self.closed = False
        self._messages = list(messages)
        self._close_error = close_error
        self._input_done = asyncio.Event()

    async def send(self, data):
        self.sent.append(data)
        if data == CLOSE_STREAM_MESSAGE:
            self._input_done.set()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        await self._input_done.wait()
        for message in self._messages:
            yield message
        if self._close_error is not None:
            raise self._close_error

    async def close(self):
        self.closed = True


def _results(text, is_final):
    return json.dumps(
        {
            "type": "Results",
            "is_final": is_final,
            "channel": {"alternatives": [{"transcript": text, "confidence": 0.93}]},
        }
    )


async def _chunks(*chunks):
    for chunk in chunks:
        yield chunk


def _adapter(websocket, connects, **overrides):
    provider = DeepgramConfig(**{"api_key": "dg-test-key", **overrides})

    async def fake_connect(url, **kwargs):
        connects.append((url, kwargs))
        if isinstance(websocket, BaseException):
            raise websocket
        return websocket

    return DeepgramSTTAdapter("deepgram_stt", provider, connect_factory=fake_connect)


@pytest.mark.asyncio
async def test_deepgram_stt_streams_audio_and_yields_results():
    websocket = _MockWebSocket(
        [
            _results("we build", False),
            json.dumps({"type": "Metadata", "request_id": "abc"}),
            "not json",
            _results("we build custom desks", True),
        ]
    )
    connects = []
    adapter = _adapter(websocket, connects)

    await adapter.start()
    events = [e async for e in adapter.stream_transcripts("conn-1", _chunks(b"\x00\x01", b"\x02\x03"))]

    assert [(e.text, e.is_final) for e in events] == [("we build", False), ("we build custom desks", True)]
    assert events[1].sequence > events[0].sequence
    assert websocket.sent == [b"\x00\x01", b"\x02\x03", CLOSE_STREAM_MESSAGE]
    assert websocket.closed is True

    url, kwargs = connects[0]
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    assert parsed.scheme == "wss"
    assert parsed.path == "/v1/listen"
    assert query["model"] == ["nova-2"]
    assert query["encoding"] == ["linear16"]
    assert query["sample_rate"] == ["16000"]
    assert query["channels"] == ["1"]
    assert query["interim_results"] == ["true"]
    assert ("Authorization", "Token dg-test-key") in kwargs["additional_headers"]


@pytest.mark.asyncio
async def test_deepgram_error_message_raises():
    websocket = _MockWebSocket([json.dumps({"type": "Error", "description": "bad audio"})])
    adapter = _adapter(websocket, [])

    with pytest.raises(TranscriptionStreamError) as excinfo:
        async for _ in adapter.stream_transcripts("conn-1", _chunks(b"\x00")):
            pass
    assert "bad audio" in str(excinfo.value)
    assert websocket.closed is True


@pytest.mark.asyncio
async def test_deepgram_abnormal_close_raises():
    websocket = _MockWebSocket([_results("partial", False)], close_error=ConnectionClosedError(None, None))
    adapter = _adapter(websocket, [])

    with pytest.raises(TranscriptionStreamError):
        async for _ in adapter.stream_transcripts("conn-1", _chunks(b"\x00")):
            pass


@pytest.mark.asyncio
async def test_deepgram_connect_failure_raises():
    adapter = _adapter(OSError("network unreachable"), [])

    with pytest.raises(TranscriptionStreamError):
        async for _ in adapter.stream_transcripts("conn-1", _chunks()):
            pass


@pytest.mark.asyncio
async def test_deepgram_requires_api_key():
    connects = []
    adapter = _adapter(_MockWebSocket(), connects, api_key=None)

    with pytest.raises(TranscriptionStreamError):
        async for _ in adapter.stream_transcripts("conn-1", _chunks()):
            pass
    assert connects == []


@pytest.mark.asyncio
async def test_deepgram_base_url_is_normalized():
    websocket = _MockWebSocket()
    connects = []
    adapter = _adapter(websocket, connects, base_url="https://dg.example.com/custom", language="en-GB")

    events = [e async for e in adapter.stream_transcripts("conn-1", _chunks())]

    url = connects[0][0]
    parsed = urlparse(url)
    assert events == []
    assert parsed.scheme == "wss"
    assert parsed.netloc == "dg.example.com"
    assert parsed.path == "/custom/v1/listen"
    assert parse_qs(parsed.query)["language"] == ["en-GB"]
