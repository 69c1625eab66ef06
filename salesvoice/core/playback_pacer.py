"""
Playback pacing for synthesized speech.

The client plays audio on its own clock, so the server estimates how long a
reply takes to speak and re-opens capture once that estimate has elapsed.
"""

from __future__ import annotations

import asyncio
import contextlib
import math
from typing import Awaitable, Callable, Dict, Optional

import structlog

from .models import Session

logger = structlog.get_logger(__name__)

DEFAULT_WORDS_PER_SECOND = 2.5  # ~150 words per minute


def estimate_duration_ms(text: str, words_per_second: float = DEFAULT_WORDS_PER_SECOND) -> int:
    """Estimated playback duration of `text` in whole milliseconds (rounded up)."""
    if words_per_second <= 0:
        raise ValueError("words_per_second must be positive")
    words = len((text or "").split())
    return math.ceil(words * 1000 / words_per_second)


class PlaybackPacer:
    """Arms one cancellable resume timer per session."""

    def __init__(self, words_per_second: float = DEFAULT_WORDS_PER_SECOND) -> None:
        self.words_per_second = words_per_second
        self._timers: Dict[str, asyncio.Task] = {}

    def estimate(self, text: str) -> int:
        return estimate_duration_ms(text, self.words_per_second)

    def schedule_resume(
        self,
        session: Session,
        duration_ms: int,
        on_resume: Callable[[], Awaitable[None]],
    ) -> asyncio.Task:
        """Fire `on_resume` once after `duration_ms`, replacing any pending timer."""
        self.cancel(session.id)
        task = asyncio.create_task(self._fire(session, max(0, int(duration_ms)), on_resume))
        self._timers[session.id] = task
        logger.debug("Resume timer armed", session_id=session.id, duration_ms=duration_ms)
        return task

    async def _fire(
        self,
        session: Session,
        duration_ms: int,
        on_resume: Callable[[], Awaitable[None]],
    ) -> None:
        try:
            await asyncio.sleep(duration_ms / 1000.0)
        finally:
            if self._timers.get(session.id) is asyncio.current_task():
                self._timers.pop(session.id, None)
        if session.closed:
            logger.debug("Resume timer fired for closed session; ignoring", session_id=session.id)
            return
        session.capture_paused = False
        await on_resume()

    def cancel(self, session_id: str) -> bool:
        task = self._timers.pop(session_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug("Resume timer cancelled", session_id=session_id)
        return True

    def pending(self, session_id: str) -> Optional[asyncio.Task]:
        task = self._timers.get(session_id)
        if task is not None and not task.done():
            return task
        return None

    async def cancel_all(self) -> None:
        tasks = list(self._timers.values())
        self._timers.clear()
        for task in tasks:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
