"""Data model shared by the Sonoff cloud connection core."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

DEFAULT_REGION = "us"
API_URL_TEMPLATE = "https://{region}-apia.coolkit.cc"
STREAM_URL_TEMPLATE = "wss://{region}-pconnect3.coolkit.cc:8080/api/ws"


@dataclass(frozen=True)
class Credentials:
    """Account credentials and endpoint selector.

    Attributes:
        identifier: Account email or phone number (``+`` prefixed)
        secret: Account password
        region: Cloud region selector ("us", "eu", "as", "cn")
        country_code: Optional dialing prefix sent with phone logins
        base_url: Optional override of the request endpoint
        stream_url: Optional override of the streaming endpoint
    """

    identifier: str
    secret: str = field(repr=False)
    region: str = DEFAULT_REGION
    country_code: str | None = None
    base_url: str | None = None
    stream_url: str | None = None

    @property
    def is_phone(self) -> bool:
        return self.identifier.startswith("+")

    def api_url(self) -> str:
        if self.base_url:
            return self.base_url.rstrip("/")
        return API_URL_TEMPLATE.format(region=self.region)

    def ws_url(self) -> str:
        if self.stream_url:
            return self.stream_url
        return STREAM_URL_TEMPLATE.format(region=self.region)


@dataclass(frozen=True)
class TokenSet:
    """Access/refresh token pair with its wall-clock validity window."""

    access_token: str = field(repr=False)
    refresh_token: str | None = field(repr=False)
    expires_at: float
    issued_at: float = field(default_factory=time.time)
    apikey: str | None = None

    @property
    def ttl(self) -> float:
        """Original lifetime in seconds."""
        return max(self.expires_at - self.issued_at, 0.0)

    def remaining(self, now: float | None = None) -> float:
        now = time.time() if now is None else now
        return self.expires_at - now


@dataclass(slots=True)
class Session:
    """Authenticated, endpoint-bound context of one live connection."""

    endpoint: str
    protocol_version: int
    tokens: TokenSet
    connection_id: str
    heartbeat_interval: float | None = None


class ConnectionState(Enum):
    """Connectivity states of the connection manager."""

    DISCONNECTED = "disconnected"
    AUTHENTICATING = "authenticating"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class EventKind(Enum):
    """Kinds of inbound stream events."""

    STATE_UPDATE = "state_update"
    LIVENESS = "liveness"
    ERROR_NOTICE = "error_notice"
    ACK = "ack"
    PONG = "pong"


@dataclass(frozen=True)
class InboundEvent:
    """One decoded inbound frame. Consumed immediately, never stored."""

    device_id: str | None
    kind: EventKind
    payload: dict[str, Any]
    received_at: float
    sequence: int | None = None
    error: int = 0


@dataclass(slots=True, eq=False)
class PendingCommand:
    """Outbound command awaiting acknowledgement."""

    device_id: str
    payload: dict[str, Any]
    sequence: int
    submitted_at: float
    future: asyncio.Future[None]
    timeout: float
    retry_count: int = 0
    resent: bool = False
    in_flight: bool = False
    timeout_handle: asyncio.TimerHandle | None = None

    @property
    def key(self) -> tuple[str, int]:
        return (self.device_id, self.sequence)
