"""WebSocket helpers for the GeoTask realtime connection."""

from __future__ import annotations

import asyncio

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidStatus,
    InvalidURI,
    WebSocketException,
)

from .errors import (
    AuthenticationFailedError,
    ConnectionFailedError,
    RealtimeNetworkError,
)


async def connect_websocket(
    url: str,
    *,
    token: str,
    timeout: float = 15.0,
) -> ClientConnection:
    """Connect to the realtime endpoint with a bearer token.

    Application heartbeats run on top of the socket, so protocol-level
    pings are disabled.

    Args:
        url: ws:// or wss:// endpoint
        token: Access token sent as ``Authorization: Bearer <token>``
        timeout: Connection timeout
    """
    try:
        return await asyncio.wait_for(
            websockets.connect(
                url,
                additional_headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
                ping_interval=None,
                close_timeout=5,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise ConnectionFailedError("WebSocket connection timed out") from err
    except InvalidStatus as err:
        if err.response.status_code in (401, 403):
            raise AuthenticationFailedError(
                f"WebSocket handshake rejected ({err.response.status_code})"
            ) from err
        raise ConnectionFailedError("WebSocket handshake failed") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise ConnectionFailedError("WebSocket handshake failed") from err
    except (OSError, WebSocketException) as err:
        raise RealtimeNetworkError(err) from err
