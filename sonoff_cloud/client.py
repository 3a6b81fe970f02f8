"""High-level client for the Sonoff cloud control channel.

This module provides the API collaborators use. It wires together:
- AuthSession (tokens and refresh)
- the request/response and streaming transports
- ConnectionManager (state machine, reconnect, heartbeat)
- MessageDispatcher (ordered command delivery, ack correlation)
- ListenerRegistry (device-state subscriptions)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from types import TracebackType
from typing import TYPE_CHECKING, Any

import aiohttp

from .auth import DEFAULT_REFRESH_MARGIN, DEFAULT_TOKEN_TTL, AuthSession
from .dispatcher import DEFAULT_COMMAND_TIMEOUT, CommandHandle, MessageDispatcher
from .http import SonoffHttpClient
from .manager import ConnectionManager, ConnectivityListener, CredentialsProvider
from .models import ConnectionState, Credentials
from .protocol import DEFAULT_USER_AGENT
from .registry import ListenerRegistry
from .retry import RetryPolicy
from .ws_client import SonoffWsClient

if TYPE_CHECKING:
    from .dispatcher import DeviceRegistry
    from .errors import SonoffClientError
    from .registry import DeviceListener
    from .transport import RequestTransport, StreamTransport

_LOGGER = logging.getLogger(__name__)


@dataclass
class ConnectionConfig:
    """Tuning for one cloud connection.

    Attributes:
        heartbeat_interval: Probe interval in seconds, unless negotiated
        connect_timeout: Bound for stream open and probe (seconds)
        auth_timeout: Bound for one authentication attempt (seconds)
        request_timeout: Total timeout of one HTTP call (seconds)
        command_timeout: Default per-command ack timeout (seconds)
        retry_base_delay: First reconnect delay (seconds)
        retry_max_delay: Reconnect delay ceiling (seconds)
        retry_cap_exponent: Largest backoff exponent
        retry_jitter: Fractional backoff jitter
        max_reconnect_attempts: Attempts before closing (None = unlimited)
        refresh_margin: Fraction of token TTL left when refresh kicks in
        default_token_ttl: Token lifetime when the cloud does not announce one
        ws_ping_interval: Library-level WebSocket ping (None disables)
        user_agent: Client kind announced on the stream
    """

    heartbeat_interval: float = 30.0
    connect_timeout: float = 15.0
    auth_timeout: float = 15.0
    request_timeout: float = 10.0
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    retry_base_delay: float = 1.0
    retry_max_delay: float = 60.0
    retry_cap_exponent: int = 6
    retry_jitter: float = 0.2
    max_reconnect_attempts: int | None = 10
    refresh_margin: float = DEFAULT_REFRESH_MARGIN
    default_token_ttl: float = DEFAULT_TOKEN_TTL
    ws_ping_interval: float | None = None
    user_agent: str = DEFAULT_USER_AGENT

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            cap_exponent=self.retry_cap_exponent,
            jitter=self.retry_jitter,
            max_attempts=self.max_reconnect_attempts,
        )


class SonoffCloudClient:
    """Resilient control channel to the Sonoff cloud.

    Usage:
        async with aiohttp.ClientSession() as http:
            client = SonoffCloudClient(lambda: creds, http_session=http)
            async with client:
                await client.wait_connected()
                client.subscribe("1000abcdef", on_update)
                await client.submit("1000abcdef", {"switch": "on"})
    """

    def __init__(
        self,
        credentials: Credentials | CredentialsProvider,
        *,
        http_session: aiohttp.ClientSession | None = None,
        config: ConnectionConfig | None = None,
        requests: RequestTransport | None = None,
        stream: StreamTransport | None = None,
        device_registry: DeviceRegistry | None = None,
        label: str = "sonoff",
    ) -> None:
        """Initialize the client.

        Args:
            credentials: Fixed Credentials or a provider returning them
            http_session: aiohttp session for the default request transport
            config: Connection tuning
            requests: Request transport override (default: SonoffHttpClient)
            stream: Stream transport override (default: SonoffWsClient)
            device_registry: Optional payload shaper
            label: Log prefix
        """
        self.config = config or ConnectionConfig()
        self._label = label

        if isinstance(credentials, Credentials):
            fixed = credentials
            self._credentials_provider: CredentialsProvider = lambda: fixed
            base_url = fixed.api_url()
        else:
            self._credentials_provider = credentials
            base_url = None

        self._owned_http: aiohttp.ClientSession | None = None
        if requests is None:
            if base_url is None:
                raise ValueError("A request transport is required with a credentials provider")
            if http_session is None:
                http_session = self._owned_http = aiohttp.ClientSession()
            requests = SonoffHttpClient(
                http_session, base_url, timeout=self.config.request_timeout
            )
        if stream is None:
            stream = SonoffWsClient(
                user_agent=self.config.user_agent,
                ping_interval=self.config.ws_ping_interval,
                timeout=self.config.connect_timeout,
            )

        self.auth = AuthSession(
            requests,
            refresh_margin=self.config.refresh_margin,
            default_ttl=self.config.default_token_ttl,
            label=label,
        )
        self.listeners = ListenerRegistry()
        self.manager = ConnectionManager(
            self._credentials_provider,
            self.auth,
            requests,
            stream,
            retry_policy=self.config.retry_policy(),
            heartbeat_interval=self.config.heartbeat_interval,
            connect_timeout=self.config.connect_timeout,
            auth_timeout=self.config.auth_timeout,
            label=label,
        )
        self.dispatcher = MessageDispatcher(
            self.manager,
            self.listeners,
            command_timeout=self.config.command_timeout,
            device_registry=device_registry,
            user_agent=self.config.user_agent,
            label=label,
        )
        self.manager.bind_dispatcher(self.dispatcher)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> SonoffCloudClient:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    def start(self) -> None:
        """Begin connecting in the background."""
        _LOGGER.debug("[%s] Starting", self._label)
        self.manager.start()

    async def wait_connected(self, timeout: float | None = None) -> None:
        """Wait for the first (or next) Connected state."""
        await self.manager.wait_connected(timeout)

    async def shutdown(self) -> None:
        """Close the channel, failing pending commands with a cancellation."""
        try:
            await self.manager.shutdown()
        finally:
            if self._owned_http is not None:
                await self._owned_http.close()
                self._owned_http = None

    # -------------------------------------------------------------------------
    # Collaborator API
    # -------------------------------------------------------------------------

    def submit(
        self,
        device_id: str,
        payload: dict[str, Any],
        *,
        timeout: float | None = None,
    ) -> CommandHandle:
        """Submit a device command; await the handle for its outcome."""
        return self.dispatcher.submit(device_id, payload, timeout=timeout)

    def subscribe(self, device_id: str, handler: DeviceListener) -> Callable[[], None]:
        """Subscribe to events of one device, or ``"*"`` for all devices."""
        return self.listeners.subscribe(device_id, handler)

    def on_connectivity_change(
        self, listener: ConnectivityListener
    ) -> Callable[[], None]:
        return self.manager.on_connectivity_change(listener)

    def connectivity_state(self) -> ConnectionState:
        """Read-only snapshot of the connection state."""
        return self.manager.state

    @property
    def closed_error(self) -> SonoffClientError | None:
        """Fatal error that closed the client on its own, if any."""
        return self.manager.fatal_error

    async def list_devices(self) -> list[dict[str, Any]]:
        """Fetch the account's devices over the request channel."""
        return await self.manager.list_devices()
