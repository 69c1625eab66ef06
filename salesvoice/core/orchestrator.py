"""
SessionOrchestrator - per-connection conversation state machine.

Owns the session table and, for each connection, its transcription bridge,
in-flight turn task and resume timer. Every inbound operation is keyed by the
connection id; every outbound event goes through that connection's Channel.

States: IDLE -> AWAITING_CAPTURE -> PROCESSING -> SPEAKING -> AWAITING_CAPTURE
... -> CLOSED. Human text is accepted only in IDLE or AWAITING_CAPTURE and is
dropped (not queued) otherwise.
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from prometheus_client import Gauge, Histogram

from ..config import AppConfig
from ..errors import ConfigurationError, SynthesisError, TranscriptionStreamError
from ..logging_config import get_logger
from ..pipelines.registry import Pipeline
from ..transport.channel import Channel
from .models import Session, SessionState, TurnResult, TurnRole
from .playback_pacer import PlaybackPacer
from .scenario import ScenarioConfig, build_script, parse_scenario
from .session_store import SessionStore
from .speech_synthesizer import SpeechSynthesizer
from .transcription_bridge import TranscriptionBridge
from .turn_engine import TurnEngine

logger = get_logger(__name__)

_ACTIVE_SESSIONS = Gauge(
    "salesvoice_active_sessions",
    "Connected role-play sessions",
)
_TURN_RESPONSE_SECONDS = Histogram(
    "salesvoice_turn_response_seconds",
    "Time from accepted human text to reply audio delivered",
    buckets=(0.5, 1.0, 1.5, 2.0, 3.0, 5.0, 8.0, 13.0, 21.0),
    labelnames=("kind",),
)

_ACCEPTING_STATES = (SessionState.IDLE, SessionState.AWAITING_CAPTURE)


@dataclass
class _Connection:
    session: Session
    channel: Channel
    bridge: TranscriptionBridge
    turn_task: Optional[asyncio.Task] = None
    closed: bool = False


class SessionOrchestrator:
    def __init__(
        self,
        config: AppConfig,
        pipeline: Pipeline,
        *,
        store: Optional[SessionStore] = None,
        pacer: Optional[PlaybackPacer] = None,
    ) -> None:
        self.config = config
        self._conversation = config.conversation
        self._stt = pipeline.stt
        self.store = store or SessionStore()
        self.pacer = pacer or PlaybackPacer(self._conversation.words_per_second)
        self.engine = TurnEngine(
            pipeline.llm,
            question_threshold=self._conversation.question_threshold,
            closing_instruction=self._conversation.closing_instruction,
        )
        self.synthesizer = SpeechSynthesizer(pipeline.tts)
        self._connections: Dict[str, _Connection] = {}

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self, session_id: str, channel: Channel) -> Session:
        """Create and seed the session for a newly opened connection."""
        session = self._new_session(session_id, self.config.default_scenario)
        bridge = TranscriptionBridge(
            session_id,
            self._stt,
            on_transcript=lambda text: self._on_transcript(session_id, text),
            on_failure=lambda exc: self._on_transcription_failure(session_id, exc),
            stop_timeout_sec=self._conversation.transcription_stop_timeout_sec,
        )
        self._connections[session_id] = _Connection(session=session, channel=channel, bridge=bridge)
        await self.store.upsert(session)
        _ACTIVE_SESSIONS.inc()
        logger.info("Session connected", session_id=session_id, buyer_type=session.scenario.persona.buyer_type)
        await self._emit(session_id, "session_started", {"session_id": session_id})
        return session

    async def disconnect(self, session_id: str) -> None:
        """Tear down every resource of a connection; no emissions follow."""
        conn = self._connections.pop(session_id, None)
        if conn is None:
            return
        conn.closed = True
        conn.session.state = SessionState.CLOSED
        self.pacer.cancel(session_id)
        await conn.bridge.close()

        task = conn.turn_task
        conn.turn_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        await self.store.remove(session_id)
        _ACTIVE_SESSIONS.dec()
        logger.info(
            "Session disconnected",
            session_id=session_id,
            turn_count=conn.session.turn_count,
            feedback_issued=conn.session.feedback_issued,
        )

    async def shutdown(self) -> None:
        for session_id in list(self._connections):
            await self.disconnect(session_id)
        await self.pacer.cancel_all()

    # ------------------------------------------------------------------
    # Inbound operations
    # ------------------------------------------------------------------

    async def start_session(self, session_id: str, config: Union[ScenarioConfig, Mapping[str, Any], None]) -> bool:
        """Re-seed a session that has not started exchanging.

        A missing scenario re-seeds from the configured default persona.
        """
        conn = self._connections.get(session_id)
        if conn is None:
            return False
        try:
            scenario = self.config.default_scenario if config is None else parse_scenario(config)
        except ConfigurationError as exc:
            logger.warning("Rejected scenario", session_id=session_id, error=str(exc))
            await self._emit(session_id, "session_error", str(exc))
            return False

        current = conn.session
        started = current.turn_count > 0 or len(current.history) > 2
        if started or current.closed or current.processing or current.state not in _ACCEPTING_STATES:
            await self._emit(session_id, "session_error", "Session already in progress; reconnect to start over")
            return False

        session = self._new_session(session_id, scenario)
        session.state = current.state
        session.capture_paused = current.capture_paused
        conn.session = session
        await self.store.upsert(session)
        logger.info(
            "Session re-seeded",
            session_id=session_id,
            buyer_type=scenario.persona.buyer_type,
            product=scenario.product,
            difficulty=scenario.difficulty.value,
        )
        await self._emit(session_id, "session_started", {"session_id": session_id})
        return True

    async def handle_user_message(self, session_id: str, text: Any) -> bool:
        if not isinstance(text, str) or not text.strip():
            logger.debug("Empty user message ignored", session_id=session_id)
            return False
        return self._begin_turn(session_id, text.strip())

    async def start_transcription(self, session_id: str) -> None:
        conn = self._connections.get(session_id)
        if conn is None or conn.session.closed:
            return
        if conn.session.state is SessionState.IDLE:
            conn.session.state = SessionState.AWAITING_CAPTURE
        await conn.bridge.start()

    def feed_audio(self, session_id: str, chunk: bytes) -> None:
        conn = self._connections.get(session_id)
        if conn is None or conn.session.closed or conn.session.capture_paused:
            return
        conn.bridge.feed(chunk)

    async def stop_transcription(self, session_id: str) -> None:
        conn = self._connections.get(session_id)
        if conn is None:
            return
        await conn.bridge.stop()

    def get_session(self, session_id: str) -> Optional[Session]:
        conn = self._connections.get(session_id)
        return conn.session if conn else None

    def turn_task(self, session_id: str) -> Optional[asyncio.Task]:
        conn = self._connections.get(session_id)
        return conn.turn_task if conn else None

    def stats(self) -> Dict[str, Any]:
        data = self.store.stats()
        data["question_threshold"] = self._conversation.question_threshold
        data["pending_resume_timers"] = sum(1 for sid in self._connections if self.pacer.pending(sid))
        data["transcribing"] = sum(1 for conn in self._connections.values() if conn.bridge.is_active)
        return data

    # ------------------------------------------------------------------
    # Turn processing
    # ------------------------------------------------------------------

    def _new_session(self, session_id: str, scenario: ScenarioConfig) -> Session:
        instruction, seed = build_script(scenario)
        session = Session(id=session_id, scenario=scenario)
        session.append(TurnRole.INSTRUCTION, instruction)
        session.append(TurnRole.HUMAN, seed)
        return session

    def _begin_turn(self, session_id: str, text: str) -> bool:
        """Synchronous gate: claim PROCESSING and spawn the turn task."""
        conn = self._connections.get(session_id)
        if conn is None:
            return False
        session = conn.session
        if session.feedback_issued or session.state not in _ACCEPTING_STATES:
            logger.info(
                "Human text dropped",
                session_id=session_id,
                state=session.state.value,
                feedback_issued=session.feedback_issued,
            )
            return False
        session.state = SessionState.PROCESSING
        conn.turn_task = asyncio.create_task(self._run_turn(conn, session, text))
        return True

    def _is_current(self, conn: _Connection, session: Session) -> bool:
        return not conn.closed and conn.session is session and not session.closed

    async def _run_turn(self, conn: _Connection, session: Session, text: str) -> None:
        started = time.perf_counter()
        try:
            result = await self.engine.submit_human_turn(session, text)
            if not self._is_current(conn, session):
                return
            if result is None:
                session.state = SessionState.AWAITING_CAPTURE
                return
            if result.kind == TurnResult.ERROR:
                await self._emit(session.id, "gpt_reply", self._conversation.fallback_reply)
                session.state = SessionState.AWAITING_CAPTURE
                return
            await self._deliver(conn, session, result)
            _TURN_RESPONSE_SECONDS.labels(result.kind).observe(time.perf_counter() - started)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.error("Turn processing failed", session_id=session.id, exc_info=True)
            if self._is_current(conn, session) and session.state is SessionState.PROCESSING:
                session.state = SessionState.AWAITING_CAPTURE
        finally:
            if conn.turn_task is asyncio.current_task():
                conn.turn_task = None

    async def _deliver(self, conn: _Connection, session: Session, result: TurnResult) -> None:
        await self._emit(session.id, "gpt_reply", result.text)
        session.capture_paused = True
        await self._emit(session.id, "pause_transcription")
        if result.kind == TurnResult.TURN:
            session.state = SessionState.SPEAKING

        audio = await self._synthesize(session, result.text)
        if not self._is_current(conn, session):
            return
        if audio:
            await self._emit(session.id, "gpt_audio", base64.b64encode(audio).decode("ascii"))

        if result.kind == TurnResult.FEEDBACK:
            # Capture is never resumed after feedback
            session.state = SessionState.CLOSED
            self.pacer.cancel(session.id)
            await conn.bridge.close()
            logger.info("Session finished with feedback", session_id=session.id, turn_count=session.turn_count)
            return

        if audio or self._conversation.resume_after_failed_synthesis:
            duration_ms = self.pacer.estimate(result.text)
            self.pacer.schedule_resume(session, duration_ms, lambda: self._on_resume(conn, session))
        else:
            session.capture_paused = False
            await self._on_resume(conn, session)

    async def _synthesize(self, session: Session, text: str) -> bytes:
        try:
            return await self.synthesizer.synthesize(session.id, text)
        except SynthesisError as exc:
            logger.warning("Reply audio skipped; synthesis failed", session_id=session.id, error=str(exc))
            return b""

    async def _on_resume(self, conn: _Connection, session: Session) -> None:
        if not self._is_current(conn, session):
            return
        session.state = SessionState.AWAITING_CAPTURE
        await self._emit(session.id, "resume_transcription")

    # ------------------------------------------------------------------
    # Transcription callbacks
    # ------------------------------------------------------------------

    async def _on_transcript(self, session_id: str, text: str) -> None:
        conn = self._connections.get(session_id)
        if conn is None or conn.session.closed:
            return
        if not self._conversation.auto_submit_transcripts:
            await self._emit(session_id, "transcription", text)
            return
        session = conn.session
        if session.feedback_issued or session.state not in _ACCEPTING_STATES:
            logger.info("Transcript dropped; session busy", session_id=session_id, state=session.state.value)
            return
        await self._emit(session_id, "transcription", text)
        self._begin_turn(session_id, text)

    async def _on_transcription_failure(self, session_id: str, exc: TranscriptionStreamError) -> None:
        conn = self._connections.get(session_id)
        if conn is None or conn.session.closed:
            return
        await self._emit(session_id, "transcription", self._conversation.transcription_failed_text)

    # ------------------------------------------------------------------

    async def _emit(self, session_id: str, event: str, data: Any = None) -> None:
        conn = self._connections.get(session_id)
        if conn is None or conn.closed:
            logger.debug("Emission suppressed for closed connection", session_id=session_id, event_name=event)
            return
        await conn.channel.emit(event, data)
