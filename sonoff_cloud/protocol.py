"""Protocol helpers for Sonoff cloud stream frames.

Frames are JSON objects on a WebSocket text channel. Heartbeats are the bare
text frames ``ping``/``pong``.
"""

from __future__ import annotations

import json
import secrets
import string
import time
from typing import Any

from .errors import SonoffProtocolViolation, SonoffUnauthorized
from .models import EventKind, InboundEvent

PROTOCOL_VERSION = 8
DEFAULT_USER_AGENT = "app"
PING_FRAME = "ping"
PONG_FRAME = "pong"

# Error codes the cloud uses for a rejected or expired token
UNAUTHORIZED_CODES: frozenset[int] = frozenset({401, 406})

_NONCE_ALPHABET = string.ascii_letters + string.digits


def _nonce(length: int = 8) -> str:
    return "".join(secrets.choice(_NONCE_ALPHABET) for _ in range(length))


def build_handshake(
    *,
    access_token: str,
    apikey: str | None,
    user_agent: str = DEFAULT_USER_AGENT,
    timestamp_ms: int | None = None,
) -> dict[str, Any]:
    """Build the ``userOnline`` frame sent right after the WebSocket upgrade.

    Args:
        access_token: Current access token.
        apikey: Account API key returned by login.
        user_agent: Client kind announced to the cloud.
        timestamp_ms: Optional epoch milliseconds override.
    """
    now_ms = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    return {
        "action": "userOnline",
        "at": access_token,
        "apikey": apikey,
        "userAgent": user_agent,
        "nonce": _nonce(),
        "ts": now_ms // 1000,
        "version": PROTOCOL_VERSION,
        "sequence": str(now_ms),
    }


def parse_handshake_reply(data: Any) -> tuple[int, float | None]:
    """Validate the handshake reply.

    Returns:
        Tuple of negotiated protocol version and heartbeat interval in
        seconds (None when the cloud did not announce one).

    Raises:
        SonoffUnauthorized: The cloud rejected the access token.
        SonoffProtocolViolation: The reply is not a handshake reply.
    """
    if not isinstance(data, dict) or "error" not in data:
        raise SonoffProtocolViolation("Unexpected handshake reply")

    error = _as_int(data.get("error"))
    if error is None:
        raise SonoffProtocolViolation("Handshake reply has no error code")
    if error in UNAUTHORIZED_CODES:
        raise SonoffUnauthorized(f"Stream handshake rejected ({error})")
    if error != 0:
        raise SonoffProtocolViolation(f"Stream handshake failed ({error})")

    config = data.get("config") or {}
    interval: float | None = None
    if isinstance(config, dict) and config.get("hb"):
        raw = config.get("hbInterval")
        if isinstance(raw, (int, float)) and raw > 0:
            interval = float(raw)

    version = _as_int(data.get("version"))
    return (version if version is not None else PROTOCOL_VERSION), interval


def build_command_frame(
    *,
    device_id: str,
    sequence: int,
    params: dict[str, Any],
    access_token: str,
    apikey: str | None,
    user_agent: str = DEFAULT_USER_AGENT,
    resent: bool = False,
) -> dict[str, Any]:
    """Build an ``update`` frame carrying a device command."""
    frame: dict[str, Any] = {
        "action": "update",
        "deviceid": device_id,
        "apikey": apikey,
        "userAgent": user_agent,
        "sequence": str(sequence),
        "params": params,
        "at": access_token,
    }
    if resent:
        frame["resent"] = True
    return frame


def decode_frame(raw: str | bytes | dict[str, Any]) -> dict[str, Any] | str:
    """Decode a raw text frame into a JSON object or heartbeat keyword."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    text = raw.strip()
    if text in (PING_FRAME, PONG_FRAME):
        return text
    try:
        data = json.loads(text)
    except json.JSONDecodeError as err:
        raise SonoffProtocolViolation("Frame is not valid JSON") from err
    if not isinstance(data, dict):
        raise SonoffProtocolViolation("Frame is not a JSON object")
    return data


def parse_inbound(
    raw: str | bytes | dict[str, Any], *, received_at: float | None = None
) -> InboundEvent | None:
    """Parse a raw inbound frame into an InboundEvent.

    Returns None for frames that carry nothing for consumers (unknown
    actions, stray ``ping``).

    Raises:
        SonoffProtocolViolation: The frame is malformed.
    """
    received_at = time.time() if received_at is None else received_at
    data = decode_frame(raw)

    if data == PONG_FRAME:
        return InboundEvent(None, EventKind.PONG, {}, received_at)
    if isinstance(data, str):
        return None

    action = data.get("action")
    device_id = data.get("deviceid")
    sequence = _as_int(data.get("sequence"))

    if action == "pong":
        return InboundEvent(None, EventKind.PONG, {}, received_at)

    if action is None and "error" in data:
        error = _as_int(data.get("error"))
        if error is None:
            raise SonoffProtocolViolation("Acknowledgement has no error code")
        payload = {k: v for k, v in data.items() if k not in ("at", "apikey")}
        kind = EventKind.ACK if error == 0 else EventKind.ERROR_NOTICE
        return InboundEvent(device_id, kind, payload, received_at, sequence, error)

    params = data.get("params")
    if params is not None and not isinstance(params, dict):
        raise SonoffProtocolViolation("Frame params is not an object")

    if action == "update":
        if not device_id:
            raise SonoffProtocolViolation("Update frame has no device id")
        return InboundEvent(
            device_id, EventKind.STATE_UPDATE, params or {}, received_at, sequence
        )

    if action == "sysmsg":
        return InboundEvent(
            device_id, EventKind.LIVENESS, params or {}, received_at, sequence
        )

    return None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None
