"""Speech pipeline component contracts and provider adapters."""

from .base import Component, LLMComponent, LLMResponse, STTComponent, TTSComponent

__all__ = ["Component", "LLMComponent", "LLMResponse", "STTComponent", "TTSComponent"]
