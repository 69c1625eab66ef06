"""Text-to-audio wrapper over the configured TTS component."""

from __future__ import annotations

from prometheus_client import Counter

from ..errors import SynthesisError
from ..logging_config import get_logger
from ..pipelines.base import TTSComponent

logger = get_logger(__name__)

_SYNTHESIS_FAILURES = Counter(
    "salesvoice_synthesis_failures_total",
    "Replies whose speech synthesis failed",
)


class SpeechSynthesizer:
    def __init__(self, tts: TTSComponent) -> None:
        self._tts = tts

    async def synthesize(self, session_id: str, text: str) -> bytes:
        """Return the complete encoded audio for `text`; raises SynthesisError."""
        if not text or not text.strip():
            return b""
        chunks = []
        try:
            async for chunk in self._tts.synthesize(session_id, text):
                chunks.append(chunk)
        except SynthesisError:
            _SYNTHESIS_FAILURES.inc()
            raise
        except Exception as exc:
            _SYNTHESIS_FAILURES.inc()
            logger.error("Speech synthesis error", session_id=session_id, exc_info=True)
            raise SynthesisError(f"Speech synthesis error: {exc!r}") from exc

        audio = b"".join(chunks)
        if not audio:
            _SYNTHESIS_FAILURES.inc()
            raise SynthesisError("Speech synthesis returned no audio")
        logger.debug("Speech synthesized", session_id=session_id, audio_bytes=len(audio))
        return audio
