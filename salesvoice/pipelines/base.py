"""
Component contracts for the speech pipeline.

Each external service (streaming STT, chat completion, speech synthesis) is
wrapped by an adapter implementing one of these interfaces, so the core only
depends on the contract and tests can substitute fakes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from ..core.models import TranscriptEvent


@dataclass
class LLMResponse:
    """Text returned by a completion service plus provider metadata (usage)."""
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class Component(ABC):
    """Lifecycle shared by all adapters."""

    component_key: str = "component"

    async def start(self) -> None:
        """Warm up shared resources."""

    async def stop(self) -> None:
        """Release shared resources."""


class STTComponent(Component):
    @abstractmethod
    def stream_transcripts(
        self,
        call_id: str,
        audio_chunks: AsyncIterator[bytes],
        options: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[TranscriptEvent]:
        """Feed `audio_chunks` to the service and yield recognition events.

        Ends when the input is exhausted and the service has flushed its final
        results. Raises TranscriptionStreamError on service failure.
        """


class LLMComponent(Component):
    @abstractmethod
    async def generate(
        self,
        call_id: str,
        messages: List[Dict[str, str]],
        options: Optional[Dict[str, Any]] = None,
    ) -> LLMResponse:
        """Return the next message for an ordered chat history.

        Raises GenerationError on failure.
        """


class TTSComponent(Component):
    @abstractmethod
    def synthesize(
        self,
        call_id: str,
        text: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[bytes]:
        """Yield encoded audio chunks for `text`.

        Raises SynthesisError on failure.
        """
