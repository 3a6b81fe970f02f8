"""Low-level connect for the Sonoff cloud WebSocket endpoint."""

from __future__ import annotations

import asyncio

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

from ..errors import (
    SonoffConnectionLost,
    SonoffHandshakeError,
    SonoffTimeout,
)


async def connect_websocket(
    url: str,
    *,
    ping_interval: float | None = None,
    timeout: float = 15.0,
) -> ClientConnection:
    """Open the raw connection to a pconnect stream endpoint.

    Only the WebSocket upgrade happens here; the userOnline handshake is left
    to SonoffWsClient. Frames are JSON text of arbitrary size, so no message
    size limit is applied.

    Args:
        url: Region stream URL, e.g. wss://eu-pconnect3.coolkit.cc:8080/api/ws
        ping_interval: Library-level ping; the cloud heartbeat is text "ping"
        timeout: Bound for the TCP, TLS and upgrade exchange
    """
    try:
        return await asyncio.wait_for(
            websockets.connect(
                url,
                ping_interval=ping_interval,
                close_timeout=5,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise SonoffTimeout(f"Stream connect to {url} timed out") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise SonoffHandshakeError(f"Stream endpoint {url} refused the upgrade") from err
    except (OSError, WebSocketException) as err:
        raise SonoffConnectionLost(f"Stream endpoint {url} unreachable") from err
