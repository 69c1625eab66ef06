"""
TranscriptionBridge - push-based audio in, finalized transcripts out.

The client pushes capture audio as it records; the bridge buffers it in an
asyncio.Queue consumed by the streaming STT component. Only finalized,
non-empty transcripts reach `on_transcript`, at most once per utterance.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import AsyncIterator, Awaitable, Callable, Optional

from prometheus_client import Counter

from ..errors import TranscriptionStreamError
from ..logging_config import get_logger
from ..pipelines.base import STTComponent

logger = get_logger(__name__)

_TRANSCRIPTION_FAILURES = Counter(
    "salesvoice_transcription_failures_total",
    "Transcription streams that ended with a service failure",
)
_AUDIO_BYTES_RX = Counter(
    "salesvoice_capture_audio_bytes_total",
    "Capture audio bytes accepted into transcription buffers",
)

TranscriptCallback = Callable[[str], Awaitable[None]]
FailureCallback = Callable[[TranscriptionStreamError], Awaitable[None]]


class TranscriptionBridge:
    """One streaming recognition session at a time for a single connection."""

    def __init__(
        self,
        session_id: str,
        stt: STTComponent,
        *,
        on_transcript: TranscriptCallback,
        on_failure: FailureCallback,
        stop_timeout_sec: float = 5.0,
    ) -> None:
        self.session_id = session_id
        self._stt = stt
        self._on_transcript = on_transcript
        self._on_failure = on_failure
        self._stop_timeout_sec = stop_timeout_sec
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._last_final_sequence = 0
        self._failure_reported = False

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Open a fresh stream, tearing down any previous one first."""
        if self._task is not None:
            logger.debug("Restarting active transcription stream", session_id=self.session_id)
            await self._teardown()
        queue: asyncio.Queue = asyncio.Queue()
        self._queue = queue
        self._last_final_sequence = 0
        self._failure_reported = False
        self._task = asyncio.create_task(self._run(queue))
        logger.info("Transcription started", session_id=self.session_id)

    def feed(self, chunk: bytes) -> None:
        if not chunk or self._queue is None or not self.is_active:
            return
        self._queue.put_nowait(bytes(chunk))
        _AUDIO_BYTES_RX.inc(len(chunk))

    async def stop(self) -> None:
        """End the input and give the service time to flush final results."""
        task, queue = self._task, self._queue
        if task is None or queue is None:
            return
        queue.put_nowait(None)
        self._queue = None
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self._stop_timeout_sec)
        except asyncio.TimeoutError:
            logger.warning(
                "Transcription stream did not finish in time; cancelling",
                session_id=self.session_id,
                timeout_sec=self._stop_timeout_sec,
            )
        finally:
            await self._teardown()
        logger.info("Transcription stopped", session_id=self.session_id)

    async def close(self) -> None:
        """Immediate teardown without waiting for pending results."""
        await self._teardown()

    async def _teardown(self) -> None:
        task = self._task
        self._task = None
        self._queue = None
        if task is None or task is asyncio.current_task():
            return
        if not task.done():
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _audio(self, queue: asyncio.Queue) -> AsyncIterator[bytes]:
        while True:
            chunk = await queue.get()
            if chunk is None:
                return
            yield chunk

    async def _run(self, queue: asyncio.Queue) -> None:
        try:
            async for event in self._stt.stream_transcripts(self.session_id, self._audio(queue)):
                if not event.is_final:
                    continue
                text = (event.text or "").strip()
                if not text:
                    continue
                if event.sequence and event.sequence <= self._last_final_sequence:
                    logger.debug(
                        "Dropping stale final transcript",
                        session_id=self.session_id,
                        sequence=event.sequence,
                    )
                    continue
                self._last_final_sequence = max(self._last_final_sequence, event.sequence)
                logger.info("Final transcript", session_id=self.session_id, preview=text[:80])
                await self._on_transcript(text)
        except TranscriptionStreamError as exc:
            await self._report_failure(exc)
        except Exception as exc:
            logger.error("Unexpected transcription error", session_id=self.session_id, exc_info=True)
            wrapped = TranscriptionStreamError(str(exc) or type(exc).__name__)
            wrapped.__cause__ = exc
            await self._report_failure(wrapped)
        finally:
            if self._task is asyncio.current_task():
                self._task = None
                self._queue = None

    async def _report_failure(self, exc: TranscriptionStreamError) -> None:
        if self._failure_reported:
            return
        self._failure_reported = True
        _TRANSCRIPTION_FAILURES.inc()
        logger.warning("Transcription stream failed", session_id=self.session_id, error=str(exc))
        self._task = None
        self._queue = None
        await self._on_failure(exc)
