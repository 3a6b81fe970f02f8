"""Pytest configuration and fixtures for sonoff_cloud tests."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from sonoff_cloud.errors import SonoffConnectionLost
from sonoff_cloud.http import RequestKind, SonoffResponse
from sonoff_cloud.models import ConnectionState, Credentials, Session
from sonoff_cloud.ws_client import SonoffWsMessage, SonoffWsMessageType, StreamHandle

TEST_EMAIL = "test@example.com"
TEST_PASSWORD = "testpassword"
TEST_DEVICE_ID = "test-device-001"
TEST_DEVICE_ID_2 = "test-device-002"


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(
        identifier=TEST_EMAIL,
        secret=TEST_PASSWORD,
        region="us",
        base_url="http://localhost:8089",
        stream_url="ws://localhost:8090/api/ws",
    )


def create_mock_response(
    status: int = 200,
    json_data: Any = None,
    text_data: str | None = None,
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        json_data: Data to return from json() call
        text_data: Data to return from text() call

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status

    if json_data is not None:
        response.json.return_value = json_data
    if text_data is not None:
        response.text.return_value = text_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until predicate() holds."""

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


class StateRecorder:
    """Connectivity listener that records every transition."""

    def __init__(self) -> None:
        self.transitions: list[tuple[ConnectionState, ConnectionState]] = []

    def __call__(self, old: ConnectionState, new: ConnectionState) -> None:
        self.transitions.append((old, new))

    @property
    def states(self) -> list[ConnectionState]:
        return [new for _, new in self.transitions]


class FakeRequestTransport:
    """In-memory RequestTransport.

    ``errors[name]`` holds exceptions raised, one per call, before the call
    starts succeeding. ``gates[name]`` makes a call wait on an event.
    """

    def __init__(self, *, expires_in: float | None = 3600.0) -> None:
        self.expires_in = expires_in
        self.calls: list[tuple[str, Any]] = []
        self.errors: dict[str, list[Exception]] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.devices: list[dict[str, Any]] = [
            {"deviceid": TEST_DEVICE_ID, "name": "Test Device", "online": True}
        ]
        self._logins = 0
        self._refreshes = 0

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    async def _enter(self, name: str, detail: Any = None) -> None:
        self.calls.append((name, detail))
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        pending = self.errors.get(name)
        if pending:
            raise pending.pop(0)

    def _token_body(self, access: str, refresh: str) -> dict[str, Any]:
        data: dict[str, Any] = {
            "at": access,
            "rt": refresh,
            "user": {"apikey": "test-apikey"},
        }
        if self.expires_in is not None:
            data["expires_in"] = self.expires_in
        return {"error": 0, "data": data}

    async def send(
        self,
        kind: RequestKind,
        payload: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> SonoffResponse:
        await self._enter(kind.name.lower(), token)
        return SonoffResponse(200, {"error": 0})

    async def login(self, credentials: Credentials) -> SonoffResponse:
        await self._enter("login", credentials.identifier)
        self._logins += 1
        n = self._logins
        return SonoffResponse(200, self._token_body(f"access-{n}", f"refresh-{n}"))

    async def refresh(self, refresh_token: str, token: str | None = None) -> SonoffResponse:
        await self._enter("refresh", refresh_token)
        self._refreshes += 1
        n = self._refreshes
        return SonoffResponse(
            200, self._token_body(f"access-refreshed-{n}", f"refresh-refreshed-{n}")
        )

    async def list_devices(self, token: str) -> list[dict[str, Any]]:
        await self._enter("list_devices", token)
        return list(self.devices)

    async def control(
        self, token: str, device_id: str, params: dict[str, Any]
    ) -> SonoffResponse:
        await self._enter("control", (token, device_id, params))
        return SonoffResponse(200, {"error": 0})

    async def probe(self, token: str | None = None) -> bool:
        await self._enter("probe", token)
        return True


class FakeStreamTransport:
    """In-memory StreamTransport.

    Inbound frames are queued per handle with ``push``; ``drop`` simulates the
    peer closing the connection. With ``auto_ack`` every command frame is
    acknowledged as soon as it is sent.
    """

    def __init__(
        self,
        *,
        auto_ack: bool = True,
        answer_pings: bool = True,
        heartbeat_interval: float | None = None,
    ) -> None:
        self.auto_ack = auto_ack
        self.answer_pings = answer_pings
        self.heartbeat_interval = heartbeat_interval
        self.sessions: list[Session] = []
        self.handles: list[StreamHandle] = []
        self.closed: list[StreamHandle] = []
        self.sent: list[tuple[StreamHandle, dict[str, Any] | str]] = []
        self.open_errors: list[Exception] = []
        self.open_gate: asyncio.Event | None = None
        self._inbox: dict[str, asyncio.Queue[Any]] = {}

    @property
    def current(self) -> StreamHandle:
        return self.handles[-1]

    async def open(self, session: Session) -> StreamHandle:
        self.sessions.append(session)
        if self.open_gate is not None:
            await self.open_gate.wait()
        if self.open_errors:
            raise self.open_errors.pop(0)
        handle = StreamHandle(
            MagicMock(),
            protocol_version=8,
            heartbeat_interval=self.heartbeat_interval,
        )
        self._inbox[handle.handle_id] = asyncio.Queue()
        self.handles.append(handle)
        return handle

    async def send(self, handle: StreamHandle, frame: dict[str, Any] | str) -> None:
        if not handle.is_open:
            raise SonoffConnectionLost("Stream handle is closed")
        self.sent.append((handle, frame))
        if isinstance(frame, dict) and frame.get("action") == "update" and self.auto_ack:
            self.push(
                handle,
                {"error": 0, "deviceid": frame["deviceid"], "sequence": frame["sequence"]},
            )
        elif frame == "ping" and self.answer_pings:
            self.push(handle, "pong")

    def receive(self, handle: StreamHandle):
        if not handle.is_open:
            raise SonoffConnectionLost("Stream handle is closed")
        return self._iter(handle)

    async def _iter(self, handle: StreamHandle):
        queue = self._inbox[handle.handle_id]
        while True:
            item = await queue.get()
            if item is None:
                handle.invalidate()
                yield SonoffWsMessage(SonoffWsMessageType.CLOSED)
                return
            text = item if isinstance(item, str) else json.dumps(item)
            yield SonoffWsMessage(SonoffWsMessageType.TEXT, text)

    async def close(self, handle: StreamHandle) -> None:
        handle.invalidate()
        if handle not in self.closed:
            self.closed.append(handle)
        self._inbox[handle.handle_id].put_nowait(None)

    def push(self, handle: StreamHandle, frame: dict[str, Any] | str) -> None:
        self._inbox[handle.handle_id].put_nowait(frame)

    def drop(self, handle: StreamHandle | None = None) -> None:
        """Peer closes the connection."""
        handle = handle or self.current
        self._inbox[handle.handle_id].put_nowait(None)

    def commands(self, device_id: str | None = None) -> list[dict[str, Any]]:
        return [
            frame
            for _, frame in self.sent
            if isinstance(frame, dict)
            and frame.get("action") == "update"
            and (device_id is None or frame["deviceid"] == device_id)
        ]

    def commands_on(self, handle: StreamHandle) -> list[dict[str, Any]]:
        return [
            frame
            for sent_handle, frame in self.sent
            if sent_handle is handle
            and isinstance(frame, dict)
            and frame.get("action") == "update"
        ]


@pytest.fixture
def requests_fake() -> FakeRequestTransport:
    return FakeRequestTransport()


@pytest.fixture
def stream_fake() -> FakeStreamTransport:
    return FakeStreamTransport()
