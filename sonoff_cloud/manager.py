"""Connection state machine for the Sonoff cloud.

One actor task owns the connection state. Everything that may block
(authentication, stream open, probe, backoff sleep, the receive loop, the
heartbeat loop) runs in its own task and reports back by posting an event
into the actor queue, so state reads and writes never race.

States:
    disconnected -> authenticating -> connecting -> connected <-> degraded
    any failure  -> reconnecting -> authenticating ...
    connected    -> reconnecting on stream closure or token expiry (no
                    degraded step; only liveness loss degrades first)
    invalid credentials, exhausted retries or shutdown -> closed
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from .errors import (
    SonoffAuthError,
    SonoffClientError,
    SonoffCommandRejected,
    SonoffConnectionLost,
    SonoffConnectivityError,
    SonoffInvalidCredentials,
    SonoffResponseError,
    SonoffUnauthorized,
    SonoffUnreachable,
)
from .health import HealthMonitor
from .models import ConnectionState, Credentials, EventKind, Session
from .protocol import PING_FRAME, PROTOCOL_VERSION
from .retry import FailureClass, RetryPolicy
from .ws_client import SonoffWsMessageType, StreamHandle

if TYPE_CHECKING:
    from .auth import AuthSession
    from .dispatcher import MessageDispatcher
    from .models import TokenSet
    from .transport import RequestTransport, StreamTransport

_LOGGER = logging.getLogger(__name__)

CredentialsProvider = Callable[[], "Credentials | Awaitable[Credentials]"]
ConnectivityListener = Callable[
    [ConnectionState, ConnectionState], "Awaitable[None] | None"
]

_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset(
        {ConnectionState.AUTHENTICATING, ConnectionState.CLOSED}
    ),
    ConnectionState.AUTHENTICATING: frozenset(
        {
            ConnectionState.CONNECTING,
            ConnectionState.RECONNECTING,
            ConnectionState.CLOSED,
        }
    ),
    ConnectionState.CONNECTING: frozenset(
        {
            ConnectionState.CONNECTED,
            ConnectionState.RECONNECTING,
            ConnectionState.CLOSED,
        }
    ),
    ConnectionState.CONNECTED: frozenset(
        {
            ConnectionState.DEGRADED,
            ConnectionState.RECONNECTING,
            ConnectionState.CLOSED,
        }
    ),
    ConnectionState.DEGRADED: frozenset(
        {
            ConnectionState.CONNECTED,
            ConnectionState.RECONNECTING,
            ConnectionState.CLOSED,
        }
    ),
    ConnectionState.RECONNECTING: frozenset(
        {ConnectionState.AUTHENTICATING, ConnectionState.CLOSED}
    ),
    ConnectionState.CLOSED: frozenset(),
}

MISSED_HEARTBEAT_TOLERANCE = 2


def _classify(err: SonoffClientError) -> FailureClass:
    if isinstance(err, SonoffInvalidCredentials):
        return FailureClass.FATAL
    return FailureClass.TRANSIENT


class _EventType(Enum):
    START = auto()
    AUTH_OK = auto()
    AUTH_FAILED = auto()
    CONNECT_OK = auto()
    CONNECT_FAILED = auto()
    HEARTBEAT_MISSED = auto()
    HEARTBEAT_OK = auto()
    STREAM_SILENT = auto()
    STREAM_CLOSED = auto()
    AUTH_EXPIRED = auto()
    RETRY_ELAPSED = auto()
    SHUTDOWN = auto()


@dataclass(slots=True)
class _Event:
    type: _EventType
    generation: int = 0
    payload: Any = None


class ConnectionManager:
    """Drives authenticate / connect / monitor / reconnect for one account.

    Usage:
        manager = ConnectionManager(provider, auth, requests, stream)
        manager.on_connectivity_change(my_listener)
        manager.start()
        await manager.wait_connected()
        ...
        await manager.shutdown()
    """

    def __init__(
        self,
        credentials_provider: CredentialsProvider,
        auth: AuthSession,
        requests: RequestTransport,
        stream: StreamTransport,
        *,
        retry_policy: RetryPolicy | None = None,
        heartbeat_interval: float = 30.0,
        connect_timeout: float = 15.0,
        auth_timeout: float = 15.0,
        label: str = "sonoff",
    ) -> None:
        """Initialize the manager.

        Args:
            credentials_provider: Returns Credentials (sync or async), called
                at every authentication cycle
            auth: Token owner
            requests: Request/response transport
            stream: Streaming transport
            retry_policy: Backoff policy for reconnection
            heartbeat_interval: Probe interval unless the cloud negotiates one
            connect_timeout: Bound for stream open and for the probe call
            auth_timeout: Bound for one authentication attempt
            label: Log prefix
        """
        self._credentials_provider = credentials_provider
        self._auth = auth
        self._requests = requests
        self._stream = stream
        self._retry_policy = retry_policy or RetryPolicy()
        self._heartbeat_interval = heartbeat_interval
        self._connect_timeout = connect_timeout
        self._auth_timeout = auth_timeout
        self._label = label

        # Connection state (actor-owned)
        self._state = ConnectionState.DISCONNECTED
        self._session: Session | None = None
        self._handle: StreamHandle | None = None
        self._generation = 0
        self._attempts = 0
        self._fatal_error: SonoffClientError | None = None
        self._state_event = asyncio.Event()

        # Tasks
        self._queue: asyncio.Queue[_Event] = asyncio.Queue()
        self._actor: asyncio.Task[None] | None = None
        self._op_task: asyncio.Task[None] | None = None
        self._retry_task: asyncio.Task[None] | None = None
        self._receive_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self._actor_done = False

        # Connectivity listeners, delivered in order by the notifier task
        self._listeners: list[ConnectivityListener] = []
        self._notifications: asyncio.Queue[
            tuple[ConnectionState, ConnectionState] | None
        ] = asyncio.Queue()
        self._notifier: asyncio.Task[None] | None = None

        self._dispatcher: MessageDispatcher | None = None
        self._health = HealthMonitor(
            send_probe=self._send_probe,
            on_missed=lambda count: self._post(_EventType.HEARTBEAT_MISSED, count),
            on_silent=lambda: self._post(_EventType.STREAM_SILENT),
            on_recovered=lambda: self._post(_EventType.HEARTBEAT_OK),
            label=label,
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        """Read-only snapshot of the connectivity state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def is_closed(self) -> bool:
        return self._state is ConnectionState.CLOSED

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def attempts(self) -> int:
        """Reconnect attempts since the last successful connection."""
        return self._attempts

    @property
    def fatal_error(self) -> SonoffClientError | None:
        """Error that closed the manager, if it closed on its own."""
        return self._fatal_error

    @property
    def health(self) -> HealthMonitor:
        return self._health

    def bind_dispatcher(self, dispatcher: MessageDispatcher) -> None:
        """Attach the dispatcher that consumes inbound frames."""
        self._dispatcher = dispatcher

    def on_connectivity_change(
        self, listener: ConnectivityListener
    ) -> Callable[[], None]:
        """Register a listener called as ``listener(old_state, new_state)``.

        Every transition is delivered exactly once, in order. Returns a
        callable that removes the listener.
        """
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def start(self) -> None:
        """Start connecting. Idempotent."""
        self._ensure_running()
        self._post(_EventType.START)

    async def wait_connected(self, timeout: float | None = None) -> None:
        """Wait until connected.

        Raises:
            SonoffInvalidCredentials: Credentials were rejected.
            SonoffConnectivityError: Retries were exhausted or the manager
                was shut down.
            TimeoutError: Not connected within timeout.
        """

        async def _wait() -> None:
            while True:
                if self._state is ConnectionState.CONNECTED:
                    return
                if self._state is ConnectionState.CLOSED:
                    if self._fatal_error is not None:
                        raise self._fatal_error
                    raise SonoffConnectivityError("Connection manager is closed")
                await self._state_event.wait()

        await asyncio.wait_for(_wait(), timeout)

    async def shutdown(self) -> None:
        """Close the connection for good and release every resource."""
        if self._actor_done:
            return
        self._ensure_running()
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(_Event(_EventType.SHUTDOWN, payload=done))
        await asyncio.shield(done)
        if self._actor is not None:
            await self._actor

    # -------------------------------------------------------------------------
    # Sender capability (used by the dispatcher)
    # -------------------------------------------------------------------------

    async def fresh_tokens(self) -> TokenSet:
        """Tokens safe to send with, refreshing ahead of expiry."""
        tokens = self._auth.tokens
        if tokens is not None and not self._auth.is_expiring_soon():
            return tokens
        try:
            return await self._auth.ensure_fresh()
        except SonoffAuthError as err:
            self._post(_EventType.AUTH_EXPIRED, err)
            raise

    async def send_command(self, frame: dict[str, Any]) -> bool:
        """Send a command frame over the active transport.

        Returns:
            False when sent on the stream (ack arrives inbound), True when
            the request channel acknowledged it directly.
        """
        handle = self._handle
        if handle is not None and handle.is_open:
            try:
                await self._stream.send(handle, frame)
            except SonoffConnectionLost:
                self._post(_EventType.STREAM_CLOSED, handle)
                raise
            return False

        _LOGGER.debug("[%s] No live stream, sending over request channel", self._label)
        try:
            await self.call_with_token(
                lambda token: self._requests.control(
                    token, frame["deviceid"], frame["params"]
                )
            )
        except SonoffResponseError as err:
            raise SonoffCommandRejected(err.status, str(err)) from err
        return True

    async def call_with_token(
        self, call: Callable[[str], Coroutine[Any, Any, Any]]
    ) -> Any:
        """Run a request with a fresh token; on Unauthorized refresh once and resubmit once."""
        tokens = await self.fresh_tokens()
        try:
            return await call(tokens.access_token)
        except SonoffUnauthorized:
            _LOGGER.info("[%s] Token rejected, refreshing once", self._label)
            try:
                tokens = await self._auth.refresh(tokens)
            except SonoffAuthError:
                tokens = await self.fresh_tokens()
            return await call(tokens.access_token)

    async def list_devices(self) -> list[dict[str, Any]]:
        """Fetch the account device list over the request channel."""
        result: list[dict[str, Any]] = await self.call_with_token(
            self._requests.list_devices
        )
        return result

    # -------------------------------------------------------------------------
    # Internal: actor
    # -------------------------------------------------------------------------

    def _ensure_running(self) -> None:
        if self._actor is None:
            self._actor = asyncio.create_task(self._run())
            self._notifier = asyncio.create_task(self._notify_loop())

    def _post(self, event_type: _EventType, payload: Any = None) -> None:
        self._post_for(self._generation, event_type, payload)

    def _post_for(self, generation: int, event_type: _EventType, payload: Any = None) -> None:
        if self._actor_done:
            if isinstance(payload, StreamHandle):
                self._spawn(self._stream.close(payload))
            return
        self._queue.put_nowait(_Event(event_type, generation, payload))

    async def _run(self) -> None:
        handlers: dict[_EventType, Callable[[_Event], Awaitable[None] | None]] = {
            _EventType.START: self._on_start,
            _EventType.AUTH_OK: self._on_auth_ok,
            _EventType.AUTH_FAILED: self._on_auth_failed,
            _EventType.CONNECT_OK: self._on_connect_ok,
            _EventType.CONNECT_FAILED: self._on_connect_failed,
            _EventType.HEARTBEAT_MISSED: self._on_heartbeat_missed,
            _EventType.HEARTBEAT_OK: self._on_heartbeat_ok,
            _EventType.STREAM_SILENT: self._on_stream_silent,
            _EventType.STREAM_CLOSED: self._on_stream_closed,
            _EventType.AUTH_EXPIRED: self._on_auth_expired,
            _EventType.RETRY_ELAPSED: self._on_retry_elapsed,
        }
        while True:
            event = await self._queue.get()

            if event.type is _EventType.SHUTDOWN:
                await self._do_shutdown()
                event.payload.set_result(None)
                return

            if self._state is ConnectionState.CLOSED or (
                event.type is not _EventType.START
                and event.generation != self._generation
            ):
                _LOGGER.debug("[%s] Dropping stale %s", self._label, event.type.name)
                self._discard(event)
                continue

            try:
                result = handlers[event.type](event)
                if inspect.isawaitable(result):
                    await result
            except Exception as err:
                _LOGGER.exception(
                    "[%s] Error handling %s: %s", self._label, event.type.name, err
                )

    def _discard(self, event: _Event) -> None:
        if isinstance(event.payload, StreamHandle):
            self._spawn(self._stream.close(event.payload))

    def _transition(self, new_state: ConnectionState) -> bool:
        old_state = self._state
        if new_state is old_state:
            return False
        if new_state not in _TRANSITIONS[old_state]:
            _LOGGER.warning(
                "[%s] Ignoring invalid transition %s → %s",
                self._label,
                old_state.value,
                new_state.value,
            )
            return False

        _LOGGER.debug("[%s] State: %s → %s", self._label, old_state.value, new_state.value)
        self._state = new_state
        self._notifications.put_nowait((old_state, new_state))
        self._state_event.set()
        self._state_event = asyncio.Event()
        return True

    async def _notify_loop(self) -> None:
        while True:
            item = await self._notifications.get()
            if item is None:
                return
            old_state, new_state = item
            for listener in list(self._listeners):
                try:
                    result = listener(old_state, new_state)
                    if inspect.isawaitable(result):
                        await result
                except Exception as err:
                    _LOGGER.exception(
                        "[%s] Connectivity listener error: %s", self._label, err
                    )

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        return self._track(asyncio.create_task(coro))

    def _track(self, task: asyncio.Task[Any]) -> asyncio.Task[Any]:
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # -------------------------------------------------------------------------
    # Internal: event handlers
    # -------------------------------------------------------------------------

    def _on_start(self, event: _Event) -> None:
        if self._state is ConnectionState.DISCONNECTED:
            self._begin_authenticating()

    def _begin_authenticating(self) -> None:
        self._generation += 1
        self._transition(ConnectionState.AUTHENTICATING)
        _LOGGER.info(
            "[%s] Authenticating (attempt #%d)", self._label, self._attempts + 1
        )
        self._op_task = asyncio.create_task(self._authenticate(self._generation))

    def _on_auth_ok(self, event: _Event) -> None:
        credentials, tokens = event.payload
        self._session = Session(
            endpoint=credentials.ws_url(),
            protocol_version=PROTOCOL_VERSION,
            tokens=tokens,
            connection_id=uuid4().hex[:12],
        )
        self._transition(ConnectionState.CONNECTING)
        _LOGGER.info("[%s] Connecting to %s", self._label, self._session.endpoint)
        self._op_task = asyncio.create_task(
            self._connect(self._generation, self._session)
        )

    async def _on_auth_failed(self, event: _Event) -> None:
        err: SonoffAuthError = event.payload
        failure = _classify(err)
        if failure is FailureClass.TRANSIENT:
            _LOGGER.warning("[%s] Authentication failed: %s", self._label, err)
        await self._begin_reconnecting(failure, err)

    def _on_connect_ok(self, event: _Event) -> None:
        handle: StreamHandle = event.payload
        assert self._session is not None
        self._handle = handle
        self._session.protocol_version = handle.protocol_version
        self._session.heartbeat_interval = (
            handle.heartbeat_interval or self._heartbeat_interval
        )

        self._transition(ConnectionState.CONNECTED)
        self._attempts = 0
        _LOGGER.info(
            "[%s] Connected (protocol v%d, session %s)",
            self._label,
            handle.protocol_version,
            self._session.connection_id,
        )

        self._receive_task = asyncio.create_task(
            self._receive_loop(self._generation, handle)
        )
        self._health.start(self._session.heartbeat_interval)
        if self._dispatcher is not None:
            self._dispatcher.on_connected()

    async def _on_connect_failed(self, event: _Event) -> None:
        err: SonoffClientError = event.payload
        if isinstance(err, SonoffUnauthorized):
            self._auth.invalidate()
        _LOGGER.warning("[%s] Connect failed: %s", self._label, err)
        await self._begin_reconnecting(FailureClass.TRANSIENT)

    async def _on_heartbeat_missed(self, event: _Event) -> None:
        count: int = event.payload
        if self._state is ConnectionState.CONNECTED:
            self._transition(ConnectionState.DEGRADED)
        if self._state is ConnectionState.DEGRADED and count >= MISSED_HEARTBEAT_TOLERANCE:
            await self._begin_reconnecting(FailureClass.TRANSIENT)

    def _on_heartbeat_ok(self, event: _Event) -> None:
        if self._state is ConnectionState.DEGRADED:
            self._transition(ConnectionState.CONNECTED)
            if self._dispatcher is not None:
                self._dispatcher.on_connected()

    async def _on_stream_silent(self, event: _Event) -> None:
        if self._state is ConnectionState.CONNECTED:
            self._transition(ConnectionState.DEGRADED)
        if self._state is ConnectionState.DEGRADED:
            await self._begin_reconnecting(FailureClass.TRANSIENT)

    async def _on_stream_closed(self, event: _Event) -> None:
        if event.payload is not self._handle:
            return
        if self._state in (ConnectionState.CONNECTED, ConnectionState.DEGRADED):
            _LOGGER.warning("[%s] Stream closed", self._label)
            await self._begin_reconnecting(FailureClass.TRANSIENT)

    async def _on_auth_expired(self, event: _Event) -> None:
        err: SonoffAuthError = event.payload
        failure = _classify(err)
        if failure is FailureClass.FATAL or self._state in (
            ConnectionState.CONNECTED,
            ConnectionState.DEGRADED,
        ):
            await self._begin_reconnecting(failure, err)

    def _on_retry_elapsed(self, event: _Event) -> None:
        if self._state is ConnectionState.RECONNECTING:
            self._begin_authenticating()

    # -------------------------------------------------------------------------
    # Internal: phases
    # -------------------------------------------------------------------------

    async def _begin_reconnecting(
        self, failure: FailureClass, cause: SonoffClientError | None = None
    ) -> None:
        self._release_connection()
        self._generation += 1

        delay = self._retry_policy.next_delay(self._attempts, failure)
        if delay is None and failure is FailureClass.FATAL and cause is not None:
            _LOGGER.error("[%s] Not retrying: %s", self._label, cause)
            await self._close_fatal(cause)
            return

        self._transition(ConnectionState.RECONNECTING)
        if delay is None:
            err = SonoffConnectivityError(
                f"Giving up after {self._attempts} reconnect attempts"
            )
            _LOGGER.error("[%s] %s", self._label, err)
            await self._close_fatal(err)
            return

        self._attempts += 1
        _LOGGER.info(
            "[%s] Reconnecting in %.1fs (attempt %d)", self._label, delay, self._attempts
        )
        self._retry_task = asyncio.create_task(
            self._retry_after(self._generation, delay)
        )

    def _release_connection(self) -> None:
        """Tear down the live connection without waiting for it."""
        if self._receive_task is not None:
            self._receive_task.cancel()
            self._receive_task = None
        health_task = self._health.stop_nowait()
        if health_task is not None:
            self._track(health_task)
        if self._handle is not None:
            self._spawn(self._stream.close(self._handle))
            self._handle = None
        if self._dispatcher is not None:
            self._dispatcher.on_disconnected()

    async def _close_fatal(self, err: SonoffClientError) -> None:
        self._fatal_error = err
        await self._teardown(reason=str(err))

    async def _do_shutdown(self) -> None:
        _LOGGER.info("[%s] Shutting down", self._label)
        await self._teardown(reason="Client shut down")
        self._actor_done = True

        # Events posted before shutdown may still hold stream handles
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if event.type is _EventType.SHUTDOWN:
                event.payload.set_result(None)
            else:
                self._discard(event)

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        self._notifications.put_nowait(None)
        if self._notifier is not None:
            await self._notifier

    async def _teardown(self, *, reason: str) -> None:
        """Cancel timers and in-flight operations, release the stream, close."""
        self._generation += 1
        tasks = [t for t in (self._op_task, self._retry_task) if t is not None]
        self._op_task = None
        self._retry_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self._auth.cancel()

        if self._receive_task is not None:
            self._receive_task.cancel()
            await asyncio.gather(self._receive_task, return_exceptions=True)
            self._receive_task = None
        await self._health.stop()

        handle, self._handle = self._handle, None
        if handle is not None:
            await self._stream.close(handle)

        if self._dispatcher is not None:
            self._dispatcher.fail_all(reason)
        self._session = None
        self._transition(ConnectionState.CLOSED)

    # -------------------------------------------------------------------------
    # Internal: blocking operations (own tasks)
    # -------------------------------------------------------------------------

    async def _authenticate(self, generation: int) -> None:
        try:
            credentials = await self._resolve_credentials()
            tokens = await asyncio.wait_for(
                self._login(credentials), timeout=self._auth_timeout
            )
        except SonoffAuthError as err:
            self._post_for(generation, _EventType.AUTH_FAILED, err)
            return
        except TimeoutError as err:
            failure = SonoffUnreachable("Authentication timed out")
            failure.__cause__ = err
            self._post_for(generation, _EventType.AUTH_FAILED, failure)
            return
        except SonoffClientError as err:
            failure = SonoffUnreachable(str(err))
            failure.__cause__ = err
            self._post_for(generation, _EventType.AUTH_FAILED, failure)
            return
        self._post_for(generation, _EventType.AUTH_OK, (credentials, tokens))

    async def _resolve_credentials(self) -> Credentials:
        try:
            credentials = self._credentials_provider()
            if inspect.isawaitable(credentials):
                credentials = await credentials
        except SonoffAuthError:
            raise
        except Exception as err:
            raise SonoffUnreachable(f"Credentials unavailable: {err}") from err
        return credentials

    async def _login(self, credentials: Credentials) -> TokenSet:
        if credentials == self._auth.credentials and self._auth.tokens is not None:
            return await self._auth.ensure_fresh()
        return await self._auth.authenticate(credentials)

    async def _connect(self, generation: int, session: Session) -> None:
        handle: StreamHandle | None = None
        try:
            handle = await asyncio.wait_for(
                self._stream.open(session), timeout=self._connect_timeout
            )
            await asyncio.wait_for(
                self._requests.probe(session.tokens.access_token),
                timeout=self._connect_timeout,
            )
        except asyncio.CancelledError:
            if handle is not None:
                await asyncio.shield(self._stream.close(handle))
            raise
        except (SonoffClientError, TimeoutError) as err:
            if handle is not None:
                await self._stream.close(handle)
            if isinstance(err, TimeoutError):
                err = SonoffConnectionLost("Connect timed out")
            self._post_for(generation, _EventType.CONNECT_FAILED, err)
            return
        self._post_for(generation, _EventType.CONNECT_OK, handle)

    async def _retry_after(self, generation: int, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Reconnect cancelled", self._label)
            raise
        self._post_for(generation, _EventType.RETRY_ELAPSED)

    async def _receive_loop(self, generation: int, handle: StreamHandle) -> None:
        """Pump inbound frames in arrival order until the handle closes."""
        message_count = 0
        try:
            async for msg in self._stream.receive(handle):
                if msg.type is not SonoffWsMessageType.TEXT:
                    _LOGGER.info(
                        "[%s] Stream ended (%s) after %d frames",
                        self._label,
                        msg.type.value,
                        message_count,
                    )
                    break
                message_count += 1
                self._on_frame(msg.data)
        except asyncio.CancelledError:
            _LOGGER.debug(
                "[%s] Receive loop cancelled (%d frames)", self._label, message_count
            )
            raise
        except SonoffClientError as err:
            _LOGGER.warning("[%s] Stream error: %s", self._label, err)
        self._post_for(generation, _EventType.STREAM_CLOSED, handle)

    def _on_frame(self, raw: Any) -> None:
        self._health.on_traffic()
        if self._dispatcher is None:
            return
        event = self._dispatcher.on_inbound(raw)
        if event is not None and event.kind is EventKind.PONG:
            self._health.on_heartbeat_ack()

    async def _send_probe(self) -> None:
        handle = self._handle
        if handle is None or not handle.is_open:
            return
        try:
            await self._stream.send(handle, PING_FRAME)
        except SonoffConnectionLost:
            self._post(_EventType.STREAM_CLOSED, handle)
            raise
