"""Builds the configured STT/LLM/TTS components and manages their lifecycle."""

from __future__ import annotations

from dataclasses import dataclass

from ..config import AppConfig
from ..logging_config import get_logger
from .base import LLMComponent, STTComponent, TTSComponent
from .deepgram import DeepgramSTTAdapter
from .openai import OpenAILLMAdapter, OpenAITTSAdapter

logger = get_logger(__name__)


@dataclass
class Pipeline:
    stt: STTComponent
    llm: LLMComponent
    tts: TTSComponent

    async def start(self) -> None:
        for component in (self.stt, self.llm, self.tts):
            await component.start()
        logger.info(
            "Pipeline components started",
            stt=self.stt.component_key,
            llm=self.llm.component_key,
            tts=self.tts.component_key,
        )

    async def stop(self) -> None:
        for component in (self.stt, self.llm, self.tts):
            try:
                await component.stop()
            except Exception:
                logger.warning("Pipeline component stop failed", component=component.component_key, exc_info=True)


def build_pipeline(config: AppConfig) -> Pipeline:
    """Create the Deepgram STT and OpenAI LLM/TTS adapters from config."""
    return Pipeline(
        stt=DeepgramSTTAdapter("deepgram_stt", config.deepgram),
        llm=OpenAILLMAdapter("openai_llm", config.openai),
        tts=OpenAITTSAdapter("openai_tts", config.openai),
    )
