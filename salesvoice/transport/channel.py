"""
Outbound event channels.

The orchestrator only ever talks to a Channel; the aiohttp WebSocket
implementation frames each event as JSON `{"event": ..., "data": ...}`.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any

from aiohttp import web

from ..logging_config import get_logger

logger = get_logger(__name__)


class Channel(ABC):
    """Opaque per-connection outbound event sink."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...

    @abstractmethod
    async def emit(self, event: str, data: Any = None) -> bool:
        """Deliver one event; returns False when it could not be sent."""


class WebSocketChannel(Channel):
    def __init__(self, ws: web.WebSocketResponse, connection_id: str) -> None:
        self._ws = ws
        self.connection_id = connection_id
        self._send_lock = asyncio.Lock()

    @property
    def closed(self) -> bool:
        return self._ws.closed

    async def emit(self, event: str, data: Any = None) -> bool:
        if self._ws.closed:
            logger.debug("Emit after close ignored", session_id=self.connection_id, event_name=event)
            return False
        try:
            async with self._send_lock:
                await self._ws.send_json({"event": event, "data": data})
        except (ConnectionResetError, RuntimeError) as exc:
            logger.debug(
                "Emit failed; peer gone",
                session_id=self.connection_id,
                event_name=event,
                error=str(exc),
            )
            return False
        return True
