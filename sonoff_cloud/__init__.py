"""Resilient control channel between a local controller and the Sonoff cloud."""

__version__ = "0.1.0"

from .auth import AuthSession
from .client import ConnectionConfig, SonoffCloudClient
from .dispatcher import CommandHandle, MessageDispatcher
from .errors import (
    SonoffAuthError,
    SonoffClientError,
    SonoffCommandCancelled,
    SonoffCommandError,
    SonoffCommandRejected,
    SonoffCommandTimeout,
    SonoffConnectionLost,
    SonoffConnectivityError,
    SonoffHandshakeError,
    SonoffInvalidCredentials,
    SonoffProtocolViolation,
    SonoffResponseError,
    SonoffTimeout,
    SonoffTransportError,
    SonoffUnauthorized,
    SonoffUnreachable,
)
from .health import HealthMonitor
from .http import RequestKind, SonoffHttpClient, SonoffResponse
from .manager import ConnectionManager
from .models import (
    ConnectionState,
    Credentials,
    EventKind,
    InboundEvent,
    PendingCommand,
    Session,
    TokenSet,
)
from .registry import WILDCARD, ListenerRegistry
from .retry import FailureClass, RetryPolicy, compute_delay
from .transport import RequestTransport, StreamTransport
from .ws_client import SonoffWsClient, StreamHandle

__all__ = [
    "WILDCARD",
    "AuthSession",
    "CommandHandle",
    "ConnectionConfig",
    "ConnectionManager",
    "ConnectionState",
    "Credentials",
    "EventKind",
    "FailureClass",
    "HealthMonitor",
    "InboundEvent",
    "ListenerRegistry",
    "MessageDispatcher",
    "PendingCommand",
    "RequestKind",
    "RequestTransport",
    "RetryPolicy",
    "Session",
    "SonoffAuthError",
    "SonoffClientError",
    "SonoffCloudClient",
    "SonoffCommandCancelled",
    "SonoffCommandError",
    "SonoffCommandRejected",
    "SonoffCommandTimeout",
    "SonoffConnectionLost",
    "SonoffConnectivityError",
    "SonoffHandshakeError",
    "SonoffHttpClient",
    "SonoffInvalidCredentials",
    "SonoffProtocolViolation",
    "SonoffResponse",
    "SonoffResponseError",
    "SonoffTimeout",
    "SonoffTransportError",
    "SonoffUnauthorized",
    "SonoffUnreachable",
    "SonoffWsClient",
    "StreamHandle",
    "StreamTransport",
    "TokenSet",
    "__version__",
    "compute_delay",
]
