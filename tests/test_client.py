"""Tests for the SonoffCloudClient facade."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from sonoff_cloud import (
    ConnectionConfig,
    ConnectionState,
    SonoffCloudClient,
    SonoffHttpClient,
    SonoffInvalidCredentials,
    SonoffUnauthorized,
    SonoffWsClient,
)
from sonoff_cloud.models import EventKind

from .conftest import TEST_DEVICE_ID, wait_until

FAST = ConnectionConfig(retry_base_delay=0.01, retry_max_delay=0.05, retry_jitter=0.0)


class TestConnectionConfig:
    """Tests for ConnectionConfig."""

    def test_defaults(self):
        config = ConnectionConfig()
        assert config.heartbeat_interval == 30.0
        assert config.command_timeout == 10.0
        assert config.max_reconnect_attempts == 10

    def test_retry_policy(self):
        policy = ConnectionConfig(
            retry_base_delay=2.0,
            retry_max_delay=30.0,
            retry_cap_exponent=4,
            retry_jitter=0.1,
            max_reconnect_attempts=None,
        ).retry_policy()
        assert policy.base_delay == 2.0
        assert policy.max_delay == 30.0
        assert policy.cap_exponent == 4
        assert policy.jitter == 0.1
        assert policy.max_attempts is None


class TestConstruction:
    """Tests for transport wiring."""

    async def test_default_transports(self, credentials, mock_session):
        client = SonoffCloudClient(credentials, http_session=mock_session)
        assert isinstance(client.manager._requests, SonoffHttpClient)
        assert isinstance(client.manager._stream, SonoffWsClient)
        assert client._owned_http is None

    async def test_owned_http_session_closed(self, credentials, stream_fake):
        client = SonoffCloudClient(credentials, stream=stream_fake)
        owned = client._owned_http
        assert owned is not None

        await client.shutdown()

        assert owned.closed
        assert client._owned_http is None

    def test_provider_requires_request_transport(self, credentials):
        with pytest.raises(ValueError, match="request transport"):
            SonoffCloudClient(lambda: credentials)


class TestSonoffCloudClient:
    """End-to-end behavior over in-memory transports."""

    async def test_context_manager_round_trip(
        self, credentials, requests_fake, stream_fake
    ):
        updates = MagicMock()
        async with SonoffCloudClient(
            credentials, config=FAST, requests=requests_fake, stream=stream_fake
        ) as client:
            await client.wait_connected(timeout=2.0)
            assert client.connectivity_state() is ConnectionState.CONNECTED

            client.subscribe(TEST_DEVICE_ID, updates)
            await asyncio.wait_for(client.submit(TEST_DEVICE_ID, {"switch": "on"}).wait(), 2.0)

            stream_fake.push(
                stream_fake.current,
                {"action": "update", "deviceid": TEST_DEVICE_ID, "params": {"switch": "on"}},
            )
            await wait_until(lambda: updates.called)

            devices = await client.list_devices()

        event = updates.call_args.args[0]
        assert event.kind is EventKind.STATE_UPDATE
        assert devices[0]["deviceid"] == TEST_DEVICE_ID
        assert client.connectivity_state() is ConnectionState.CLOSED
        assert client.closed_error is None

    async def test_async_credentials_provider(
        self, credentials, requests_fake, stream_fake
    ):
        async def provider():
            return credentials

        client = SonoffCloudClient(
            provider, config=FAST, requests=requests_fake, stream=stream_fake
        )
        async with client:
            await client.wait_connected(timeout=2.0)
        assert requests_fake.calls[0] == ("login", credentials.identifier)

    async def test_connectivity_listener(self, credentials, requests_fake, stream_fake):
        transitions = []
        client = SonoffCloudClient(
            credentials, config=FAST, requests=requests_fake, stream=stream_fake
        )
        client.on_connectivity_change(lambda old, new: transitions.append(new))
        async with client:
            await client.wait_connected(timeout=2.0)

        assert transitions == [
            ConnectionState.AUTHENTICATING,
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.CLOSED,
        ]

    async def test_closed_error(self, credentials, requests_fake, stream_fake):
        requests_fake.errors["login"] = [SonoffUnauthorized("bad password")]
        client = SonoffCloudClient(
            credentials, config=FAST, requests=requests_fake, stream=stream_fake
        )
        async with client:
            with pytest.raises(SonoffInvalidCredentials):
                await client.wait_connected(timeout=2.0)
            assert isinstance(client.closed_error, SonoffInvalidCredentials)
