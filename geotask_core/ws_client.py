"""WebSocket client wrapper for the GeoTask realtime connection."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, WebSocketException

from .errors import ConnectionFailedError, MessageSendFailedError
from .ws import connect_websocket

_LOGGER = logging.getLogger(__name__)


class WsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class WsMessage:
    """Normalized WebSocket message payload."""

    type: WsMessageType
    data: str | None = None
    error: BaseException | None = None


class GeoTaskWsClient:
    """Wrapper around the websockets connection used by the realtime client."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(self, url: str, *, token: str, timeout: float = 15.0) -> None:
        """Open the connection."""
        self._ws = await connect_websocket(url, token=token, timeout=timeout)

    async def close(self) -> None:
        """Close the connection. Safe to call when not connected."""
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except (WebSocketException, OSError) as err:
            _LOGGER.debug("Error closing websocket: %s", err)

    async def send_text(self, text: str) -> None:
        """Send a text frame.

        Raises:
            ConnectionFailedError: If not connected
            MessageSendFailedError: If the transport rejects the frame
        """
        if self._ws is None:
            raise ConnectionFailedError("WebSocket is not connected")
        try:
            await self._ws.send(text)
        except (ConnectionClosed, WebSocketException, OSError) as err:
            raise MessageSendFailedError(f"Failed to send frame: {err}") from err

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Send a JSON payload as a text frame."""
        await self.send_text(json.dumps(payload))

    def __aiter__(self) -> AsyncIterator[WsMessage]:
        if self._ws is None:
            raise ConnectionFailedError("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[WsMessage]:
        if self._ws is None:
            raise ConnectionFailedError("WebSocket is not connected")

        try:
            async for msg in self._ws:
                if isinstance(msg, bytes):
                    try:
                        msg = msg.decode("utf-8")
                    except UnicodeDecodeError:
                        _LOGGER.debug("Dropping non UTF-8 binary frame")
                        continue
                yield WsMessage(WsMessageType.TEXT, msg)
        except ConnectionClosed as err:
            yield WsMessage(WsMessageType.CLOSED, error=err)
        except Exception as err:
            yield WsMessage(WsMessageType.ERROR, error=err)
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield WsMessage(WsMessageType.CLOSED)
