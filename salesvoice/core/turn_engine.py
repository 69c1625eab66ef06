"""
TurnEngine - the human -> generated exchange algorithm.

One submission appends the human turn, asks the completion service for the
persona's reply and, once enough exchanges have happened, asks again with a
closing instruction so the persona switches out of character and delivers
feedback.
"""

from __future__ import annotations

import time
from typing import List, Optional

from prometheus_client import Counter, Histogram

from ..errors import GenerationError
from ..logging_config import get_logger
from ..pipelines.base import LLMComponent
from .models import Session, Turn, TurnResult, TurnRole

logger = get_logger(__name__)

DEFAULT_QUESTION_THRESHOLD = 6
DEFAULT_CLOSING_INSTRUCTION = (
    "Please now switch out of character and provide your detailed feedback as per the system prompt."
)

_GENERATION_SECONDS = Histogram(
    "salesvoice_generation_seconds",
    "Latency of completion calls",
    buckets=(0.25, 0.5, 1.0, 1.5, 2.0, 3.0, 5.0, 8.0, 13.0, 21.0),
    labelnames=("purpose",),
)
_TURNS_TOTAL = Counter(
    "salesvoice_turns_total",
    "Submitted human turns by outcome",
    labelnames=("kind",),
)


class TurnEngine:
    def __init__(
        self,
        llm: LLMComponent,
        *,
        question_threshold: int = DEFAULT_QUESTION_THRESHOLD,
        closing_instruction: str = DEFAULT_CLOSING_INSTRUCTION,
    ) -> None:
        if question_threshold < 1:
            raise ValueError("question_threshold must be at least 1")
        self._llm = llm
        self.question_threshold = question_threshold
        self.closing_instruction = closing_instruction

    async def submit_human_turn(self, session: Session, text: str) -> Optional[TurnResult]:
        """Run one exchange on `session`.

        Returns None (history untouched) when the submission is dropped: the
        session already gave feedback, is closed, or has a turn in flight.
        """
        if session.feedback_issued or session.closed:
            logger.info("Human turn dropped; session finished", session_id=session.id)
            return None
        if session.lock.locked():
            logger.info("Human turn dropped; turn already in flight", session_id=session.id)
            return None

        async with session.lock:
            session.append(TurnRole.HUMAN, text)
            started = time.perf_counter()
            try:
                reply = await self._generate(session, purpose="reply")
            except GenerationError as exc:
                logger.warning("Reply generation failed", session_id=session.id, error=str(exc))
                _TURNS_TOTAL.labels(TurnResult.ERROR).inc()
                return TurnResult(TurnResult.ERROR, str(exc))

            session.append(TurnRole.GENERATED, reply)
            session.turn_count += 1
            latency_s = time.perf_counter() - started
            logger.info(
                "Exchange completed",
                session_id=session.id,
                turn_count=session.turn_count,
                threshold=self.question_threshold,
                latency_ms=round(latency_s * 1000.0, 1),
            )

            if session.turn_count < self.question_threshold:
                _TURNS_TOTAL.labels(TurnResult.TURN).inc()
                return TurnResult(TurnResult.TURN, reply)

            closing = Turn(TurnRole.INSTRUCTION, self.closing_instruction)
            try:
                feedback = await self._generate(session, extra=[closing], purpose="feedback")
            except GenerationError as exc:
                # Closing instruction is not committed; the next exchange retries feedback
                logger.warning("Feedback generation failed", session_id=session.id, error=str(exc))
                _TURNS_TOTAL.labels(TurnResult.TURN).inc()
                return TurnResult(TurnResult.TURN, reply)

            session.append(TurnRole.INSTRUCTION, self.closing_instruction)
            session.append(TurnRole.GENERATED, feedback)
            session.feedback_issued = True
            logger.info("Feedback issued", session_id=session.id, turn_count=session.turn_count)
            _TURNS_TOTAL.labels(TurnResult.FEEDBACK).inc()
            return TurnResult(TurnResult.FEEDBACK, feedback)

    async def _generate(self, session: Session, *, extra: Optional[List[Turn]] = None, purpose: str) -> str:
        started = time.perf_counter()
        try:
            response = await self._llm.generate(session.id, session.messages(extra))
        except GenerationError:
            raise
        except Exception as exc:
            raise GenerationError(f"Completion service error: {exc!r}") from exc
        finally:
            _GENERATION_SECONDS.labels(purpose).observe(time.perf_counter() - started)

        text = (getattr(response, "text", None) or "").strip()
        if not text:
            raise GenerationError("Completion service returned empty content")
        return text
