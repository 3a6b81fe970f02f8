"""WebSocket stream transport for the Sonoff cloud."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, WebSocketException

from .errors import (
    SonoffConnectionLost,
    SonoffTimeout,
)
from .protocol import (
    DEFAULT_USER_AGENT,
    build_handshake,
    decode_frame,
    parse_handshake_reply,
)
from .transport.ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from .models import Session

_LOGGER = logging.getLogger(__name__)


class SonoffWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class SonoffWsMessage:
    """Normalized WebSocket message payload."""

    type: SonoffWsMessageType
    data: str | None = None


class StreamHandle:
    """One opened, handshaken stream connection.

    A handle is single-use: once invalidated (send failure, peer close,
    explicit close) it never becomes valid again.
    """

    def __init__(
        self,
        connection: ClientConnection,
        *,
        protocol_version: int,
        heartbeat_interval: float | None,
    ) -> None:
        self.handle_id = uuid4().hex[:8]
        self.protocol_version = protocol_version
        self.heartbeat_interval = heartbeat_interval
        self._connection = connection
        self._open = True

    @property
    def connection(self) -> ClientConnection:
        return self._connection

    @property
    def is_open(self) -> bool:
        return self._open

    def invalidate(self) -> None:
        self._open = False

    def __repr__(self) -> str:
        state = "open" if self._open else "closed"
        return f"<StreamHandle {self.handle_id} {state}>"


class SonoffWsClient:
    """Stream transport over the websockets library.

    Does not reconnect on its own; a failed handle is reported and left for
    the connection manager to replace.
    """

    def __init__(
        self,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        ping_interval: float | None = None,
        timeout: float = 15.0,
    ) -> None:
        self._user_agent = user_agent
        self._ping_interval = ping_interval
        self._timeout = timeout

    async def open(self, session: Session) -> StreamHandle:
        """Connect to the session endpoint and perform the userOnline handshake.

        Raises:
            SonoffTimeout: Connect or handshake timed out.
            SonoffHandshakeError: WebSocket upgrade was refused.
            SonoffUnauthorized: Cloud rejected the access token.
            SonoffProtocolViolation: Handshake reply was malformed.
            SonoffConnectionLost: Connection failed or dropped mid-handshake.
        """
        ws = await connect_websocket(
            session.endpoint,
            ping_interval=self._ping_interval,
            timeout=self._timeout,
        )
        try:
            version, interval = await self._handshake(ws, session)
        except BaseException:
            await self._close_connection(ws)
            raise

        handle = StreamHandle(ws, protocol_version=version, heartbeat_interval=interval)
        _LOGGER.debug(
            "[%s] Stream open %s (protocol v%d, hb=%s)",
            session.connection_id,
            handle.handle_id,
            version,
            interval,
        )
        return handle

    async def _handshake(
        self, ws: ClientConnection, session: Session
    ) -> tuple[int, float | None]:
        frame = build_handshake(
            access_token=session.tokens.access_token,
            apikey=session.tokens.apikey,
            user_agent=self._user_agent,
        )
        try:
            await ws.send(json.dumps(frame))
            raw = await asyncio.wait_for(ws.recv(), timeout=self._timeout)
        except TimeoutError as err:
            raise SonoffTimeout("Stream handshake timed out") from err
        except (OSError, WebSocketException) as err:
            raise SonoffConnectionLost("Stream closed during handshake") from err
        return parse_handshake_reply(decode_frame(raw))

    async def send(self, handle: StreamHandle, frame: dict[str, Any] | str) -> None:
        """Send one frame. Any failure invalidates the handle."""
        if not handle.is_open:
            raise SonoffConnectionLost("Stream handle is closed")
        text = frame if isinstance(frame, str) else json.dumps(frame)
        try:
            await handle.connection.send(text)
        except (OSError, WebSocketException) as err:
            handle.invalidate()
            raise SonoffConnectionLost("Stream send failed") from err

    def receive(self, handle: StreamHandle) -> AsyncIterator[SonoffWsMessage]:
        """Iterate inbound frames until the handle closes.

        The sequence is not restartable. It always ends with a CLOSED or
        ERROR message.
        """
        if not handle.is_open:
            raise SonoffConnectionLost("Stream handle is closed")
        return self._iter_messages(handle)

    async def _iter_messages(self, handle: StreamHandle) -> AsyncIterator[SonoffWsMessage]:
        try:
            async for msg in handle.connection:
                yield self._normalize_message(msg)
        except ConnectionClosed:
            handle.invalidate()
            yield SonoffWsMessage(type=SonoffWsMessageType.CLOSED)
        except Exception:
            _LOGGER.debug("Stream %s receive failed", handle.handle_id, exc_info=True)
            handle.invalidate()
            yield SonoffWsMessage(type=SonoffWsMessageType.ERROR)
        else:
            # Normal iteration completion means the peer closed gracefully.
            handle.invalidate()
            yield SonoffWsMessage(type=SonoffWsMessageType.CLOSED)

    @staticmethod
    def _normalize_message(msg: Any) -> SonoffWsMessage:
        """Normalize backend-specific frames into SonoffWsMessage."""
        if isinstance(msg, bytes):
            return SonoffWsMessage(
                SonoffWsMessageType.TEXT, msg.decode("utf-8", errors="replace")
            )
        return SonoffWsMessage(SonoffWsMessageType.TEXT, str(msg))

    async def close(self, handle: StreamHandle) -> None:
        """Close the handle. Safe to call more than once."""
        handle.invalidate()
        await self._close_connection(handle.connection)

    @staticmethod
    async def _close_connection(ws: ClientConnection) -> None:
        try:
            await asyncio.wait_for(ws.close(), timeout=2.0)
        except TimeoutError:
            _LOGGER.warning("WebSocket close timed out")
        except (OSError, WebSocketException) as err:
            _LOGGER.debug("WebSocket close failed: %s", err)
