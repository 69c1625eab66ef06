"""
Core data models for the conversation pipeline.

Typed per-session state shared by the orchestrator, the turn engine and the
playback pacer.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .scenario import ScenarioConfig


class TurnRole(str, Enum):
    INSTRUCTION = "instruction"
    HUMAN = "human"
    GENERATED = "generated"

    @property
    def chat_role(self) -> str:
        """Role name understood by chat-completion services."""
        return _CHAT_ROLES[self]


_CHAT_ROLES = {
    TurnRole.INSTRUCTION: "system",
    TurnRole.HUMAN: "user",
    TurnRole.GENERATED: "assistant",
}


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_CAPTURE = "awaiting_capture"
    PROCESSING = "processing"
    SPEAKING = "speaking"
    CLOSED = "closed"


@dataclass(frozen=True)
class Turn:
    """One message of the conversation history."""
    role: TurnRole
    text: str

    def to_message(self) -> Dict[str, str]:
        return {"role": self.role.chat_role, "content": self.text}


@dataclass(frozen=True)
class TranscriptEvent:
    """A recognition result; only final events leave the transcription bridge."""
    text: str
    is_final: bool
    sequence: int = 0


@dataclass(frozen=True)
class TurnResult:
    """Outcome of one submitted human turn."""
    kind: str  # turn | feedback | error
    text: str

    TURN = "turn"
    FEEDBACK = "feedback"
    ERROR = "error"


@dataclass
class Session:
    """Complete in-memory state of one connected client."""
    id: str
    scenario: ScenarioConfig
    history: List[Turn] = field(default_factory=list)
    turn_count: int = 0
    feedback_issued: bool = False
    capture_paused: bool = False
    state: SessionState = SessionState.IDLE
    # Single-flight guard for turn processing
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    created_at: float = field(default_factory=time.time)
    last_activity_ts: float = field(default_factory=time.time)

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    @property
    def processing(self) -> bool:
        return self.lock.locked()

    def append(self, role: TurnRole, text: str) -> Turn:
        turn = Turn(role=role, text=text)
        self.history.append(turn)
        self.last_activity_ts = time.time()
        return turn

    def messages(self, extra: Optional[List[Turn]] = None) -> List[Dict[str, str]]:
        """History as chat messages, optionally followed by uncommitted turns."""
        turns = self.history + list(extra or [])
        return [t.to_message() for t in turns]

    def to_dict(self) -> Dict[str, object]:
        return {
            "session_id": self.id,
            "state": self.state.value,
            "turn_count": self.turn_count,
            "feedback_issued": self.feedback_issued,
            "capture_paused": self.capture_paused,
            "history_length": len(self.history),
            "buyer_type": self.scenario.persona.buyer_type,
            "created_at": self.created_at,
            "last_activity_ts": self.last_activity_ts,
        }
