"""Device-state listener registry."""

from __future__ import annotations

import logging
from collections.abc import Callable

from .models import InboundEvent

_LOGGER = logging.getLogger(__name__)

WILDCARD = "*"

DeviceListener = Callable[[InboundEvent], None]


class ListenerRegistry:
    """Registered device listeners keyed by device id or WILDCARD."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[DeviceListener]] = {}

    def subscribe(self, device_id: str, handler: DeviceListener) -> Callable[[], None]:
        """Register a handler; returns a callable that removes it."""
        self._listeners.setdefault(device_id, []).append(handler)

        def _unsubscribe() -> None:
            handlers = self._listeners.get(device_id)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del self._listeners[device_id]

        return _unsubscribe

    def has_listeners(self, device_id: str | None = None) -> bool:
        if device_id is None:
            return bool(self._listeners)
        return bool(self._listeners.get(device_id) or self._listeners.get(WILDCARD))

    def notify(self, event: InboundEvent) -> int:
        """Deliver an event to device handlers, then wildcard handlers.

        A failing handler is logged and does not stop delivery to the rest.

        Returns:
            Number of handlers invoked.
        """
        handlers: list[DeviceListener] = []
        if event.device_id is not None:
            handlers.extend(self._listeners.get(event.device_id, ()))
        handlers.extend(self._listeners.get(WILDCARD, ()))

        for handler in handlers:
            try:
                handler(event)
            except Exception as err:
                _LOGGER.exception(
                    "[%s] Device listener error: %s", event.device_id, err
                )
        return len(handlers)
