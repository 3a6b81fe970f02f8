"""Transport capability interfaces.

The connection manager talks to two independent capabilities rather than a
class hierarchy, so either side can be replaced by a test double:

- RequestTransport: stateless request/response calls (see ``http``)
- StreamTransport: long-lived full-duplex frame channel (see ``ws_client``)
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..http import RequestKind, SonoffResponse
    from ..models import Credentials, Session
    from ..ws_client import SonoffWsMessage, StreamHandle


@runtime_checkable
class RequestTransport(Protocol):
    """Request/response channel."""

    async def send(
        self,
        kind: RequestKind,
        payload: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> SonoffResponse: ...

    async def login(self, credentials: Credentials) -> SonoffResponse: ...

    async def refresh(
        self, refresh_token: str, token: str | None = None
    ) -> SonoffResponse: ...

    async def list_devices(self, token: str) -> list[dict[str, Any]]: ...

    async def control(
        self, token: str, device_id: str, params: dict[str, Any]
    ) -> SonoffResponse: ...

    async def probe(self, token: str | None = None) -> bool: ...


@runtime_checkable
class StreamTransport(Protocol):
    """Streaming channel."""

    async def open(self, session: Session) -> StreamHandle: ...

    async def send(self, handle: StreamHandle, frame: dict[str, Any] | str) -> None: ...

    def receive(self, handle: StreamHandle) -> AsyncIterator[SonoffWsMessage]: ...

    async def close(self, handle: StreamHandle) -> None: ...


__all__ = ["RequestTransport", "StreamTransport"]
