"""Outbound command dispatch and inbound frame routing."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Generator
from typing import TYPE_CHECKING, Any, Protocol

from .errors import (
    SonoffClientError,
    SonoffCommandCancelled,
    SonoffCommandError,
    SonoffCommandRejected,
    SonoffCommandTimeout,
    SonoffProtocolViolation,
)
from .models import EventKind, InboundEvent, PendingCommand
from .protocol import DEFAULT_USER_AGENT, build_command_frame, parse_inbound

if TYPE_CHECKING:
    from .models import TokenSet
    from .registry import ListenerRegistry

_LOGGER = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 10.0


class CommandSender(Protocol):
    """Send capability the dispatcher needs from the connection manager."""

    @property
    def is_connected(self) -> bool: ...

    @property
    def is_closed(self) -> bool: ...

    async def fresh_tokens(self) -> TokenSet: ...

    async def send_command(self, frame: dict[str, Any]) -> bool:
        """Send a command frame; True when it was acknowledged synchronously."""
        ...


class DeviceRegistry(Protocol):
    """Collaborator that shapes command payloads from device metadata."""

    def shape_payload(self, device_id: str, payload: dict[str, Any]) -> dict[str, Any]: ...


class CommandHandle:
    """Awaitable result of a submitted command.

    Resolves to None once acknowledged; raises a SonoffCommandError subclass
    on rejection, timeout or cancellation.
    """

    def __init__(self, command: PendingCommand) -> None:
        self.device_id = command.device_id
        self.sequence = command.sequence
        self._future = command.future

    def done(self) -> bool:
        return self._future.done()

    def exception(self) -> BaseException | None:
        return self._future.exception()

    async def wait(self) -> None:
        await self._future

    def __await__(self) -> Generator[Any, None, None]:
        return self._future.__await__()

    def __repr__(self) -> str:
        return f"<CommandHandle {self.device_id}#{self.sequence} done={self.done()}>"


def _consume_result(future: asyncio.Future[None]) -> None:
    # Mark exceptions retrieved; callers are free to never await a handle
    if not future.cancelled():
        future.exception()


class MessageDispatcher:
    """Tracks pending commands per device and routes inbound frames.

    Per device, only the earliest pending command is ever on the wire; the
    next one is sent after it resolves. Commands submitted while not
    connected are held and flushed in submission order on (re)connection.
    Delivery is at-least-once: commands on the wire when the session drops
    are retransmitted with ``resent`` set.
    """

    def __init__(
        self,
        sender: CommandSender,
        listeners: ListenerRegistry,
        *,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        device_registry: DeviceRegistry | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
        label: str = "dispatch",
    ) -> None:
        self._sender = sender
        self._listeners = listeners
        self._command_timeout = command_timeout
        self._device_registry = device_registry
        self._user_agent = user_agent
        self._label = label

        # device id -> {sequence: command}, insertion (= submission) ordered
        self._pending: dict[str, dict[int, PendingCommand]] = {}
        self._last_sequence: dict[str, int] = {}
        self._sending: set[str] = set()
        self._tasks: set[asyncio.Task[None]] = set()
        self._epoch = 0

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def submit(
        self,
        device_id: str,
        payload: dict[str, Any],
        *,
        timeout: float | None = None,
    ) -> CommandHandle:
        """Queue a command for a device and try to send it right away."""
        loop = asyncio.get_running_loop()
        if self._device_registry is not None:
            payload = self._device_registry.shape_payload(device_id, payload)

        sequence = self._next_sequence(device_id)
        future: asyncio.Future[None] = loop.create_future()
        future.add_done_callback(_consume_result)
        command = PendingCommand(
            device_id=device_id,
            payload=payload,
            sequence=sequence,
            submitted_at=time.time(),
            future=future,
            timeout=self._command_timeout if timeout is None else timeout,
        )
        if self._sender.is_closed:
            self._resolve(command, SonoffCommandCancelled("Connection is closed"))
            return CommandHandle(command)

        command.timeout_handle = loop.call_later(
            command.timeout, self._expire, command.key
        )
        self._pending.setdefault(device_id, {})[sequence] = command
        _LOGGER.debug("[%s] Queued %s#%d", self._label, device_id, sequence)

        self._pump(device_id)
        return CommandHandle(command)

    def pending(self, device_id: str | None = None) -> list[PendingCommand]:
        """Snapshot of pending commands, in submission order per device."""
        if device_id is not None:
            return list(self._pending.get(device_id, {}).values())
        return [cmd for queue in self._pending.values() for cmd in queue.values()]

    def on_inbound(self, raw: str | bytes | dict[str, Any]) -> InboundEvent | None:
        """Decode one inbound frame, correlate acks and notify listeners.

        Malformed frames are logged and skipped.
        """
        try:
            event = parse_inbound(raw)
        except SonoffProtocolViolation as err:
            _LOGGER.warning("[%s] Skipping malformed frame: %s", self._label, err)
            return None

        if event is None:
            _LOGGER.debug("[%s] Ignoring frame: %.80s", self._label, raw)
            return None

        if event.kind in (EventKind.ACK, EventKind.ERROR_NOTICE) and (
            event.sequence is not None
        ):
            if self._correlate(event):
                return event

        if event.kind is EventKind.ACK:
            _LOGGER.debug(
                "[%s] Unmatched ack %s#%s", self._label, event.device_id, event.sequence
            )
        elif event.kind is not EventKind.PONG:
            self._listeners.notify(event)
        return event

    def on_connected(self) -> None:
        """Flush held commands for every device, oldest first."""
        for device_id in list(self._pending):
            self._pump(device_id)

    def on_disconnected(self) -> None:
        """Mark commands that were on the wire for retransmission."""
        self._epoch += 1
        for command in self.pending():
            if command.in_flight:
                command.in_flight = False
                command.resent = True
                command.retry_count += 1

    def fail_all(self, reason: str = "Client shut down") -> int:
        """Fail every pending command with SonoffCommandCancelled."""
        commands = self.pending()
        self._pending.clear()
        for command in commands:
            self._resolve(command, SonoffCommandCancelled(reason))
        for task in list(self._tasks):
            task.cancel()
        if commands:
            _LOGGER.info("[%s] Cancelled %d pending commands", self._label, len(commands))
        return len(commands)

    # -------------------------------------------------------------------------
    # Internal: sending
    # -------------------------------------------------------------------------

    def _next_sequence(self, device_id: str) -> int:
        # Millisecond-seeded so sequences also increase across restarts
        sequence = max(self._last_sequence.get(device_id, 0) + 1, int(time.time() * 1000))
        self._last_sequence[device_id] = sequence
        return sequence

    def _pump(self, device_id: str) -> None:
        if not self._sender.is_connected or device_id in self._sending:
            return
        queue = self._pending.get(device_id)
        if not queue:
            return
        head = next(iter(queue.values()))
        if head.in_flight:
            return

        self._sending.add(device_id)
        task = asyncio.create_task(self._send(head))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, command: PendingCommand) -> None:
        epoch = self._epoch
        acked = False
        try:
            if command.future.done():
                return
            tokens = await self._sender.fresh_tokens()
            frame = build_command_frame(
                device_id=command.device_id,
                sequence=command.sequence,
                params=command.payload,
                access_token=tokens.access_token,
                apikey=tokens.apikey,
                user_agent=self._user_agent,
                resent=command.resent,
            )
            command.in_flight = True
            acked = await self._sender.send_command(frame)
            _LOGGER.debug(
                "[%s] Sent %s#%d%s",
                self._label,
                command.device_id,
                command.sequence,
                " (resent)" if command.resent else "",
            )
        except SonoffCommandError as err:
            self._sending.discard(command.device_id)
            self._complete(command.key, err)
            return
        except SonoffClientError as err:
            command.in_flight = False
            _LOGGER.warning(
                "[%s] Send of %s#%d failed, holding for reconnect: %s",
                self._label,
                command.device_id,
                command.sequence,
                err,
            )
        finally:
            self._sending.discard(command.device_id)

        if acked:
            self._complete(command.key, None)
        elif epoch != self._epoch or command.future.done():
            # Session dropped or ack landed mid-send; move the queue along
            self._pump(command.device_id)

    # -------------------------------------------------------------------------
    # Internal: completion
    # -------------------------------------------------------------------------

    def _correlate(self, event: InboundEvent) -> bool:
        assert event.sequence is not None
        key: tuple[str, int] | None = None
        if event.device_id is not None:
            key = (event.device_id, event.sequence)
        else:
            # Acks without a device id match the single in-flight command
            matches = [
                c.key
                for c in self.pending()
                if c.in_flight and c.sequence == event.sequence
            ]
            if len(matches) == 1:
                key = matches[0]
        if key is None:
            return False

        error: SonoffCommandError | None = None
        if event.kind is EventKind.ERROR_NOTICE:
            reason = event.payload.get("reason") or event.payload.get("msg")
            error = SonoffCommandRejected(event.error, str(reason) if reason else None)
        return self._complete(key, error)

    def _complete(self, key: tuple[str, int], error: SonoffCommandError | None) -> bool:
        device_id, sequence = key
        queue = self._pending.get(device_id)
        command = queue.pop(sequence, None) if queue else None
        if command is None:
            return False
        if not queue:
            del self._pending[device_id]

        self._resolve(command, error)
        if error is None:
            _LOGGER.debug("[%s] Ack %s#%d", self._label, device_id, sequence)
        else:
            _LOGGER.warning("[%s] %s#%d failed: %s", self._label, device_id, sequence, error)

        self._pump(device_id)
        return True

    def _expire(self, key: tuple[str, int]) -> None:
        device_id, sequence = key
        self._complete(
            key,
            SonoffCommandTimeout(f"No acknowledgement for {device_id}#{sequence}"),
        )

    @staticmethod
    def _resolve(command: PendingCommand, error: SonoffCommandError | None) -> None:
        command.in_flight = False
        if command.timeout_handle is not None:
            command.timeout_handle.cancel()
            command.timeout_handle = None
        if command.future.done():
            return
        if error is None:
            command.future.set_result(None)
        else:
            command.future.set_exception(error)
