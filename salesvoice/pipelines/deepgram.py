"""
Deepgram streaming speech-recognition adapter.

Audio is pushed to Deepgram's live `/v1/listen` WebSocket while recognition
results are read back on the same connection. Both interim and final results
are surfaced as TranscriptEvents; filtering happens in the transcription bridge.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from typing import Any, AsyncIterator, Callable, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, WebSocketException

from ..config import DeepgramConfig
from ..core.models import TranscriptEvent
from ..errors import TranscriptionStreamError
from ..logging_config import get_logger
from .base import STTComponent

logger = get_logger(__name__)

CLOSE_STREAM_MESSAGE = json.dumps({"type": "CloseStream"})


def _build_listen_url(options: Dict[str, Any]) -> str:
    """Normalize a Deepgram base URL into the live /v1/listen endpoint with query params."""
    base_url = options.get("base_url") or "wss://api.deepgram.com"
    if base_url.startswith("https://"):
        base_url = base_url.replace("https://", "wss://", 1)
    elif base_url.startswith("http://"):
        base_url = base_url.replace("http://", "ws://", 1)

    parsed = urlparse(base_url)
    if not parsed.path or parsed.path == "/":
        path = "/v1/listen"
    elif "/v1/listen" in parsed.path:
        path = parsed.path
    else:
        path = parsed.path.rstrip("/") + "/v1/listen"

    query_params = {
        "model": options.get("model", "nova-2"),
        "language": options.get("language", "en-US"),
        "encoding": options.get("encoding", "linear16"),
        "sample_rate": str(options.get("sample_rate_hz", 16000)),
        "channels": str(options.get("channels", 1)),
        "interim_results": "true" if options.get("interim_results", True) else "false",
        "smart_format": "true" if options.get("smart_format", True) else "false",
    }
    existing = dict(parse_qsl(parsed.query))
    existing.update(query_params)
    return urlunparse(parsed._replace(path=path, query=urlencode(existing)))


def _extract_transcript(message: Dict[str, Any]) -> str:
    try:
        alternatives = (message.get("channel") or {}).get("alternatives") or []
        if alternatives:
            return (alternatives[0].get("transcript") or "").strip()
    except (AttributeError, IndexError, TypeError):
        pass
    return ""


class DeepgramSTTAdapter(STTComponent):
    """Streams linear PCM to Deepgram and yields recognition results."""

    def __init__(
        self,
        component_key: str,
        provider_config: DeepgramConfig,
        options: Optional[Dict[str, Any]] = None,
        *,
        connect_factory: Optional[Callable[..., Any]] = None,
    ):
        self.component_key = component_key
        self._provider_defaults = provider_config
        self._pipeline_defaults = options or {}
        self._connect = connect_factory or websockets.connect

    async def start(self) -> None:
        logger.debug(
            "Deepgram STT adapter initialized",
            component=self.component_key,
            model=self._provider_defaults.model,
            language=self._provider_defaults.language,
        )

    async def stream_transcripts(
        self,
        call_id: str,
        audio_chunks: AsyncIterator[bytes],
        options: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[TranscriptEvent]:
        merged = self._compose_options(options)
        api_key = merged.get("api_key")
        if not api_key:
            raise TranscriptionStreamError("Deepgram streaming requires an API key")

        ws_url = _build_listen_url(merged)
        logger.info("Deepgram STT opening streaming session", call_id=call_id, model=merged.get("model"))

        try:
            websocket = await self._connect(
                ws_url,
                additional_headers=[("Authorization", f"Token {api_key}")],
                max_size=16 * 1024 * 1024,
                ping_interval=20,
                ping_timeout=10,
                open_timeout=merged["connect_timeout_sec"],
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            logger.error("Failed to connect to Deepgram streaming", call_id=call_id, error=str(exc))
            raise TranscriptionStreamError(f"Deepgram streaming connection failed: {exc}") from exc

        sender = asyncio.create_task(self._pump_audio(call_id, websocket, audio_chunks))
        sequence = 0
        try:
            async for message in websocket:
                try:
                    data = json.loads(message) if isinstance(message, (str, bytes)) else message
                except (json.JSONDecodeError, UnicodeDecodeError):
                    logger.debug("Ignoring non-JSON Deepgram message", call_id=call_id)
                    continue
                if not isinstance(data, dict):
                    continue

                msg_type = data.get("type")
                if msg_type == "Results":
                    sequence += 1
                    event = TranscriptEvent(
                        text=_extract_transcript(data),
                        is_final=bool(data.get("is_final", False)),
                        sequence=sequence,
                    )
                    logger.debug(
                        "Deepgram streaming transcript received",
                        call_id=call_id,
                        transcript_preview=event.text[:50],
                        is_final=event.is_final,
                    )
                    yield event
                elif msg_type == "Error":
                    description = data.get("description") or data.get("message") or "unknown error"
                    logger.error("Deepgram streaming error", call_id=call_id, error=description)
                    raise TranscriptionStreamError(f"Deepgram streaming error: {description}")
        except ConnectionClosedError as exc:
            logger.warning("Deepgram streaming websocket closed abnormally", call_id=call_id, error=str(exc))
            raise TranscriptionStreamError(f"Deepgram stream closed abnormally: {exc}") from exc
        finally:
            if not sender.done():
                sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sender
            with contextlib.suppress(ConnectionClosed, OSError):
                await websocket.close()
            logger.info("Deepgram STT streaming session closed", call_id=call_id, results=sequence)

    async def _pump_audio(self, call_id: str, websocket: Any, audio_chunks: AsyncIterator[bytes]) -> None:
        sent_bytes = 0
        try:
            async for chunk in audio_chunks:
                if chunk:
                    await websocket.send(chunk)
                    sent_bytes += len(chunk)
            await websocket.send(CLOSE_STREAM_MESSAGE)
            logger.debug("Deepgram audio input finished", call_id=call_id, sent_bytes=sent_bytes)
        except ConnectionClosed as exc:
            logger.warning(
                "Deepgram streaming websocket closed while sending audio",
                call_id=call_id,
                error=str(exc),
            )

    def _compose_options(self, runtime_options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        runtime_options = runtime_options or {}
        defaults = self._provider_defaults.model_dump()
        merged: Dict[str, Any] = {}
        for key, value in defaults.items():
            merged[key] = runtime_options.get(key, self._pipeline_defaults.get(key, value))
        merged["connect_timeout_sec"] = float(merged.get("connect_timeout_sec") or 10.0)
        return merged
