"""Client error types for Sonoff cloud interactions."""

from __future__ import annotations


class SonoffClientError(Exception):
    """Base error for Sonoff cloud client failures."""


# -----------------------------------------------------------------------------
# Authentication
# -----------------------------------------------------------------------------


class SonoffAuthError(SonoffClientError):
    """Authentication against the cloud failed."""


class SonoffInvalidCredentials(SonoffAuthError):
    """The cloud rejected the supplied credentials. Never retried."""


class SonoffUnreachable(SonoffAuthError):
    """The login endpoint could not be reached or answered unusably."""


# -----------------------------------------------------------------------------
# Transport
# -----------------------------------------------------------------------------


class SonoffTransportError(SonoffClientError):
    """Request or stream transport failure."""


class SonoffUnauthorized(SonoffTransportError):
    """The cloud rejected the access token."""


class SonoffProtocolViolation(SonoffTransportError):
    """A response or frame did not match the expected wire format."""


class SonoffTimeout(SonoffTransportError):
    """Timeout while communicating with the cloud."""


class SonoffConnectionLost(SonoffTransportError):
    """Network connection to the cloud failed or dropped."""


class SonoffHandshakeError(SonoffConnectionLost):
    """WebSocket handshake failed."""


class SonoffResponseError(SonoffTransportError):
    """Application-level error returned by the cloud."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------


class SonoffCommandError(SonoffClientError):
    """A submitted device command did not complete successfully."""


class SonoffCommandTimeout(SonoffCommandError):
    """No acknowledgement arrived within the command timeout."""


class SonoffCommandRejected(SonoffCommandError):
    """The device or cloud rejected the command."""

    def __init__(self, code: int, reason: str | None = None) -> None:
        super().__init__(reason or f"Command rejected with error {code}")
        self.code = code
        self.reason = reason


class SonoffCommandCancelled(SonoffCommandError):
    """The command was dropped because the client shut down."""


# -----------------------------------------------------------------------------
# Connectivity
# -----------------------------------------------------------------------------


class SonoffConnectivityError(SonoffClientError):
    """Reconnection attempts exceeded the configured ceiling."""
