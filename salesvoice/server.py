"""
salesvoice server - WebSocket event transport plus health/metrics endpoints.

Each WebSocket connection is one role-play session. Text frames carry JSON
`{"event": <name>, "data": <payload>}`; binary frames are capture audio.
"""

import asyncio
import base64
import binascii
import json
import os
import signal
import time
import uuid
from typing import Any, Optional

from aiohttp import WSMsgType, web
from dotenv import load_dotenv
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .config import DEFAULT_CONFIG_PATH, AppConfig, load_config, validate_runtime_config
from .core.orchestrator import SessionOrchestrator
from .logging_config import configure_logging, get_logger, set_correlation_id
from .pipelines.registry import Pipeline, build_pipeline
from .transport.channel import WebSocketChannel

logger = get_logger(__name__)


def _decode_audio(data: Any) -> bytes:
    """Audio payload of a JSON audio_chunk frame: base64 text or a list of byte values."""
    if isinstance(data, str):
        return base64.b64decode(data, validate=True)
    if isinstance(data, list):
        return bytes(data)
    raise ValueError(f"unsupported audio payload type {type(data).__name__}")


class VoiceServer:
    """aiohttp application hosting the session orchestrator."""

    def __init__(self, config: AppConfig, pipeline: Pipeline, orchestrator: Optional[SessionOrchestrator] = None):
        self.config = config
        self.pipeline = pipeline
        self.orchestrator = orchestrator or SessionOrchestrator(config, pipeline)
        self._runner: Optional[web.AppRunner] = None
        self._start_time = time.time()

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get(self.config.server.ws_path, self._websocket_handler)
        app.router.add_get("/live", self._live_handler)
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/metrics", self._metrics_handler)
        app.router.add_get("/sessions/stats", self._sessions_stats_handler)
        app.on_startup.append(self._on_startup)
        app.on_shutdown.append(self._on_shutdown)
        return app

    async def start(self) -> None:
        runner = web.AppRunner(self.build_app())
        await runner.setup()
        site = web.TCPSite(runner, self.config.server.host, self.config.server.port)
        await site.start()
        self._runner = runner
        logger.info(
            "salesvoice server started",
            host=self.config.server.host,
            port=self.config.server.port,
            ws_path=self.config.server.ws_path,
        )

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        logger.info("salesvoice server stopped")

    async def _on_startup(self, app: web.Application) -> None:
        await self.pipeline.start()

    async def _on_shutdown(self, app: web.Application) -> None:
        await self.orchestrator.shutdown()
        await self.pipeline.stop()

    # ------------------------------------------------------------------
    # WebSocket transport
    # ------------------------------------------------------------------

    async def _websocket_handler(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(
            heartbeat=self.config.server.heartbeat_sec,
            max_msg_size=self.config.server.max_message_bytes,
        )
        await ws.prepare(request)

        session_id = uuid.uuid4().hex
        set_correlation_id(session_id)
        channel = WebSocketChannel(ws, session_id)
        logger.info("Client connected", session_id=session_id, remote=request.remote)

        await self.orchestrator.connect(session_id, channel)
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self._dispatch(session_id, channel, msg.data)
                elif msg.type == WSMsgType.BINARY:
                    self.orchestrator.feed_audio(session_id, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning("WebSocket error", session_id=session_id, error=str(ws.exception()))
                    break
        finally:
            await self.orchestrator.disconnect(session_id)
            logger.info("Client disconnected", session_id=session_id)
        return ws

    async def _dispatch(self, session_id: str, channel: WebSocketChannel, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            await channel.emit("session_error", "Malformed frame: expected JSON")
            return
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            await channel.emit("session_error", "Malformed frame: missing event name")
            return

        event = frame["event"]
        data = frame.get("data")
        if event == "start_session":
            await self.orchestrator.start_session(session_id, data)
        elif event == "user_message":
            await self.orchestrator.handle_user_message(session_id, data)
        elif event == "start_transcription":
            await self.orchestrator.start_transcription(session_id)
        elif event == "audio_chunk":
            try:
                chunk = _decode_audio(data)
            except (binascii.Error, ValueError, TypeError) as exc:
                await channel.emit("session_error", f"Malformed audio_chunk: {exc}")
                return
            self.orchestrator.feed_audio(session_id, chunk)
        elif event == "stop_transcription":
            await self.orchestrator.stop_transcription(session_id)
        else:
            logger.debug("Unknown event", session_id=session_id, event_name=event)
            await channel.emit("session_error", f"Unknown event: {event}")

    # ------------------------------------------------------------------
    # HTTP endpoints
    # ------------------------------------------------------------------

    async def _live_handler(self, request):
        """Liveness probe: returns 200 if process is up."""
        return web.Response(text="ok", status=200)

    async def _health_handler(self, request):
        """Return JSON with provider configuration and session counts."""
        try:
            providers = {
                "deepgram": {"configured": bool(self.config.deepgram.api_key), "model": self.config.deepgram.model},
                "openai": {
                    "configured": bool(self.config.openai.api_key),
                    "chat_model": self.config.openai.chat_model,
                    "tts_model": self.config.openai.tts_model,
                },
            }
            healthy = all(p["configured"] for p in providers.values())
            stats = self.orchestrator.stats()
            payload = {
                "status": "healthy" if healthy else "degraded",
                "uptime_seconds": int(time.time() - self._start_time),
                "active_sessions": stats["active_sessions"],
                "pending_timers": stats["pending_resume_timers"],
                "providers": providers,
                "conversation": {
                    "question_threshold": self.config.conversation.question_threshold,
                    "words_per_second": self.config.conversation.words_per_second,
                },
            }
            return web.json_response(payload)
        except Exception as exc:
            return web.json_response({"status": "error", "error": str(exc)}, status=500)

    async def _metrics_handler(self, request):
        """Expose Prometheus metrics."""
        try:
            data = generate_latest()
            # aiohttp forbids 'charset=' inside content_type arg; pass full header via headers.
            return web.Response(body=data, headers={"Content-Type": CONTENT_TYPE_LATEST})
        except Exception as exc:
            return web.Response(text=str(exc), status=500)

    async def _sessions_stats_handler(self, request):
        try:
            return web.json_response(self.orchestrator.stats(), status=200)
        except Exception as exc:
            logger.debug("Sessions stats handler failed", error=str(exc), exc_info=True)
            return web.json_response({"active_sessions": 0, "error": str(exc)}, status=500)


async def main():
    load_dotenv()
    config = load_config(os.getenv("SALESVOICE_CONFIG", DEFAULT_CONFIG_PATH))
    configure_logging(
        log_level=config.logging.level.upper(),
        log_to_file=config.logging.log_to_file,
        log_file_path=config.logging.log_file_path,
    )

    errors, warnings = validate_runtime_config(config)
    if errors:
        logger.error("Configuration validation FAILED", errors=errors, warnings=warnings)
        raise RuntimeError(f"Configuration errors: {errors}")
    if warnings:
        logger.warning("Configuration warnings", warnings=warnings)

    server = VoiceServer(config, build_pipeline(config))

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown_event.set)

    await server.start()
    await shutdown_event.wait()
    await server.stop()


def run():
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        pass
    finally:
        logger.info("salesvoice has shut down.")


if __name__ == "__main__":
    run()
