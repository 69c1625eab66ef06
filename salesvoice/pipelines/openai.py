"""
OpenAI adapters for reply generation and speech synthesis.

The LLM adapter calls the Chat Completions REST API with the full session
history; the TTS adapter calls the audio.speech endpoint and streams the
encoded audio body back in chunks.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import aiohttp

from ..config import OpenAIConfig
from ..errors import GenerationError, SynthesisError
from ..logging_config import get_logger
from .base import LLMComponent, LLMResponse, TTSComponent

logger = get_logger(__name__)

TTS_CHUNK_BYTES = 16 * 1024


def _make_http_headers(options: Dict[str, Any]) -> Dict[str, str]:
    headers = {
        "Authorization": f"Bearer {options['api_key']}",
        "Content-Type": "application/json",
        "User-Agent": "salesvoice/0.1",
    }
    if options.get("organization"):
        headers["OpenAI-Organization"] = options["organization"]
    return headers


class _OpenAIComponent:
    """Shared aiohttp session handling for the OpenAI adapters."""

    def __init__(
        self,
        component_key: str,
        provider_config: OpenAIConfig,
        options: Optional[Dict[str, Any]] = None,
        *,
        session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
    ):
        self.component_key = component_key
        self._provider_defaults = provider_config
        self._pipeline_defaults = options or {}
        self._session_factory = session_factory
        self._session: Optional[aiohttp.ClientSession] = None

    async def stop(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _ensure_session(self) -> None:
        if self._session and not self._session.closed:
            return
        factory = self._session_factory or aiohttp.ClientSession
        self._session = factory()

    def _option(self, runtime_options: Dict[str, Any], key: str) -> Any:
        return runtime_options.get(key, self._pipeline_defaults.get(key, getattr(self._provider_defaults, key)))


class OpenAILLMAdapter(_OpenAIComponent, LLMComponent):
    """OpenAI Chat Completions adapter."""

    async def start(self) -> None:
        logger.debug(
            "OpenAI LLM adapter initialized",
            component=self.component_key,
            default_model=self._provider_defaults.chat_model,
        )

    async def generate(
        self,
        call_id: str,
        messages: List[Dict[str, str]],
        options: Optional[Dict[str, Any]] = None,
    ) -> LLMResponse:
        merged = self._compose_options(options)
        if not merged["api_key"]:
            raise GenerationError("OpenAI chat completion requires an API key")

        await self._ensure_session()
        assert self._session

        payload: Dict[str, Any] = {
            "model": merged["chat_model"],
            "messages": messages,
            "temperature": merged["temperature"],
        }
        if merged.get("max_tokens"):
            payload["max_tokens"] = merged["max_tokens"]

        url = merged["chat_base_url"].rstrip("/") + "/chat/completions"
        logger.debug(
            "OpenAI chat completion request",
            call_id=call_id,
            model=payload["model"],
            temperature=payload["temperature"],
            messages=len(messages),
        )

        started = time.perf_counter()
        try:
            async with self._session.post(
                url,
                json=payload,
                headers=_make_http_headers(merged),
                timeout=aiohttp.ClientTimeout(total=merged["timeout_sec"]),
            ) as response:
                body = await response.text()
                if response.status >= 400:
                    logger.error(
                        "OpenAI chat completion failed",
                        call_id=call_id,
                        status=response.status,
                        body_preview=body[:128],
                    )
                    raise GenerationError(
                        f"OpenAI chat completion failed (status {response.status}): {body[:256]}"
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("OpenAI LLM connection error", call_id=call_id, error=str(exc) or type(exc).__name__)
            raise GenerationError(f"OpenAI chat completion request error: {exc!r}") from exc

        try:
            data = json.loads(body)
        except json.JSONDecodeError as exc:
            raise GenerationError("OpenAI chat completion returned invalid JSON") from exc

        choices = data.get("choices") or []
        if not choices:
            logger.warning("OpenAI chat completion returned no choices", call_id=call_id)
            raise GenerationError("OpenAI chat completion returned no choices")

        content = (choices[0].get("message") or {}).get("content") or ""
        latency_ms = round((time.perf_counter() - started) * 1000.0, 1)
        logger.info(
            "OpenAI chat completion received",
            call_id=call_id,
            model=payload["model"],
            latency_ms=latency_ms,
            preview=content[:80],
        )
        return LLMResponse(text=content, metadata=data.get("usage") or {})

    def _compose_options(self, runtime_options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        runtime_options = runtime_options or {}
        return {
            "api_key": self._option(runtime_options, "api_key"),
            "organization": self._option(runtime_options, "organization"),
            "chat_base_url": self._option(runtime_options, "chat_base_url"),
            "chat_model": runtime_options.get("model", self._option(runtime_options, "chat_model")),
            "temperature": self._option(runtime_options, "temperature"),
            "max_tokens": self._option(runtime_options, "max_tokens"),
            "timeout_sec": float(self._option(runtime_options, "timeout_sec")),
        }


class OpenAITTSAdapter(_OpenAIComponent, TTSComponent):
    """OpenAI audio.speech adapter returning encoded audio (mp3 by default)."""

    async def start(self) -> None:
        logger.debug(
            "OpenAI TTS adapter initialized",
            component=self.component_key,
            model=self._provider_defaults.tts_model,
            voice=self._provider_defaults.voice,
        )

    async def synthesize(
        self,
        call_id: str,
        text: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[bytes]:
        if not text:
            return
            yield  # Unreachable but makes this an async generator

        merged = self._compose_options(options)
        if not merged["api_key"]:
            raise SynthesisError("OpenAI speech synthesis requires an API key")

        await self._ensure_session()
        assert self._session

        # Request field is `response_format` (not `format`)
        payload = {
            "model": merged["tts_model"],
            "input": text,
            "voice": merged["voice"],
            "response_format": merged["response_format"],
        }
        logger.info(
            "OpenAI TTS synthesis started",
            call_id=call_id,
            model=payload["model"],
            voice=payload["voice"],
            text_preview=text[:64],
        )

        total = 0
        try:
            async with self._session.post(
                merged["tts_base_url"],
                json=payload,
                headers=_make_http_headers(merged),
                timeout=aiohttp.ClientTimeout(total=merged["timeout_sec"]),
            ) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    logger.error(
                        "OpenAI TTS synthesis failed",
                        call_id=call_id,
                        status=resp.status,
                        body_preview=(body or "")[:128],
                    )
                    raise SynthesisError(f"OpenAI TTS request failed (status {resp.status}): {(body or '')[:256]}")
                async for chunk in resp.content.iter_chunked(TTS_CHUNK_BYTES):
                    if chunk:
                        total += len(chunk)
                        yield chunk
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("OpenAI TTS connection error", call_id=call_id, error=str(exc) or type(exc).__name__)
            raise SynthesisError(f"OpenAI TTS request error: {exc!r}") from exc

        logger.info("OpenAI TTS synthesis completed", call_id=call_id, output_bytes=total)

    def _compose_options(self, runtime_options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        runtime_options = runtime_options or {}
        return {
            "api_key": self._option(runtime_options, "api_key"),
            "organization": self._option(runtime_options, "organization"),
            "tts_base_url": self._option(runtime_options, "tts_base_url"),
            "tts_model": self._option(runtime_options, "tts_model"),
            "voice": self._option(runtime_options, "voice"),
            "response_format": runtime_options.get(
                "response_format",
                self._pipeline_defaults.get("response_format", self._provider_defaults.tts_response_format),
            ),
            "timeout_sec": float(self._option(runtime_options, "timeout_sec")),
        }
