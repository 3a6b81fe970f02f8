"""Stream liveness monitoring."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from .errors import SonoffClientError

_LOGGER = logging.getLogger(__name__)

MISSED_FACTOR = 2
SILENCE_FACTOR = 3


class HealthMonitor:
    """Periodic heartbeat probing and staleness detection.

    Every ``interval`` a probe is sent. Traffic of any kind resets the
    silence clock. With no traffic for ``2 * interval`` a missed heartbeat is
    reported; at ``3 * interval`` the stream is reported silent.
    """

    def __init__(
        self,
        *,
        send_probe: Callable[[], Awaitable[None]],
        on_missed: Callable[[int], None],
        on_silent: Callable[[], None],
        on_recovered: Callable[[], None],
        clock: Callable[[], float] = time.monotonic,
        label: str = "health",
    ) -> None:
        self._send_probe = send_probe
        self._on_missed = on_missed
        self._on_silent = on_silent
        self._on_recovered = on_recovered
        self._clock = clock
        self._label = label

        self._interval: float | None = None
        self._task: asyncio.Task[None] | None = None
        self._last_traffic = 0.0
        self._missed = 0
        self._silence_reported = False

    @property
    def interval(self) -> float | None:
        return self._interval

    @property
    def missed(self) -> int:
        return self._missed

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval: float) -> None:
        """(Re)start probing with a fresh silence clock."""
        if self._task is not None:
            self._task.cancel()
        self._interval = interval
        self._reset()
        self._task = asyncio.create_task(self._run())
        _LOGGER.debug("[%s] Heartbeat every %.1fs", self._label, interval)

    def stop_nowait(self) -> asyncio.Task[None] | None:
        """Cancel probing immediately; returns the cancelled task, if any."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
        return task

    async def stop(self) -> None:
        task = self.stop_nowait()
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _reset(self) -> None:
        self._last_traffic = self._clock()
        self._missed = 0
        self._silence_reported = False

    def on_heartbeat_ack(self) -> None:
        """A probe reply arrived."""
        self.on_traffic()

    def on_traffic(self) -> None:
        """Any application-level inbound traffic was observed."""
        was_missing = self._missed > 0 and not self._silence_reported
        self._reset()
        if was_missing:
            _LOGGER.info("[%s] Heartbeat recovered", self._label)
            self._on_recovered()

    def on_silence(self) -> None:
        """Report the stream as silent (at most once per silence window)."""
        if self._silence_reported:
            return
        self._silence_reported = True
        _LOGGER.warning("[%s] Stream silent", self._label)
        self._on_silent()

    def evaluate(self, now: float | None = None) -> None:
        """Check the silence clock and report a miss or silence."""
        if self._interval is None or self._silence_reported:
            return
        now = self._clock() if now is None else now
        silent_for = now - self._last_traffic

        if silent_for >= SILENCE_FACTOR * self._interval:
            self.on_silence()
        elif silent_for >= MISSED_FACTOR * self._interval:
            self._missed += 1
            _LOGGER.warning(
                "[%s] Missed heartbeat (%.1fs silent, %d missed)",
                self._label,
                silent_for,
                self._missed,
            )
            self._on_missed(self._missed)

    async def _run(self) -> None:
        assert self._interval is not None
        try:
            while True:
                await asyncio.sleep(self._interval)
                try:
                    await self._send_probe()
                except SonoffClientError as err:
                    # Failed sends invalidate the stream; closure is reported there
                    _LOGGER.debug("[%s] Probe not sent: %s", self._label, err)
                self.evaluate()
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Heartbeat cancelled", self._label)
            raise
