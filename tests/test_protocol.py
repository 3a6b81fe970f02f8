"""Tests for stream frame builders and parsers."""

from __future__ import annotations

import json

import pytest

from sonoff_cloud.errors import SonoffProtocolViolation, SonoffUnauthorized
from sonoff_cloud.models import EventKind
from sonoff_cloud.protocol import (
    PROTOCOL_VERSION,
    build_command_frame,
    build_handshake,
    decode_frame,
    parse_handshake_reply,
    parse_inbound,
)


class TestHandshake:
    """Tests for the userOnline handshake."""

    def test_build_handshake(self):
        """Test handshake carries token, apikey and timing fields."""
        frame = build_handshake(
            access_token="tok", apikey="key", timestamp_ms=1_700_000_000_123
        )
        assert frame["action"] == "userOnline"
        assert frame["at"] == "tok"
        assert frame["apikey"] == "key"
        assert frame["userAgent"] == "app"
        assert frame["ts"] == 1_700_000_000
        assert frame["sequence"] == "1700000000123"
        assert frame["version"] == PROTOCOL_VERSION
        assert len(frame["nonce"]) == 8

    def test_reply_with_heartbeat_config(self):
        """Test negotiated heartbeat interval is extracted."""
        version, interval = parse_handshake_reply(
            {"error": 0, "apikey": "key", "config": {"hb": 1, "hbInterval": 145}}
        )
        assert version == PROTOCOL_VERSION
        assert interval == 145.0

    def test_reply_without_heartbeat(self):
        """Test a reply without config leaves the interval unset."""
        assert parse_handshake_reply({"error": 0}) == (PROTOCOL_VERSION, None)

    @pytest.mark.parametrize("code", [401, 406])
    def test_reply_unauthorized(self, code):
        """Test token rejection codes raise SonoffUnauthorized."""
        with pytest.raises(SonoffUnauthorized):
            parse_handshake_reply({"error": code})

    @pytest.mark.parametrize("reply", ["pong", {"action": "update"}, {"error": 500}])
    def test_reply_malformed(self, reply):
        """Test anything else is a protocol violation."""
        with pytest.raises(SonoffProtocolViolation):
            parse_handshake_reply(reply)


class TestCommandFrame:
    """Tests for build_command_frame()."""

    def test_fields(self):
        """Test command frame layout."""
        frame = build_command_frame(
            device_id="dev1",
            sequence=42,
            params={"switch": "on"},
            access_token="tok",
            apikey="key",
        )
        assert frame == {
            "action": "update",
            "deviceid": "dev1",
            "apikey": "key",
            "userAgent": "app",
            "sequence": "42",
            "params": {"switch": "on"},
            "at": "tok",
        }

    def test_resent_flag(self):
        """Test retransmitted commands are flagged."""
        frame = build_command_frame(
            device_id="dev1",
            sequence=1,
            params={},
            access_token="tok",
            apikey=None,
            resent=True,
        )
        assert frame["resent"] is True


class TestParseInbound:
    """Tests for parse_inbound()."""

    def test_ack(self):
        """Test a zero-error frame with a sequence is an ack."""
        event = parse_inbound(
            json.dumps({"error": 0, "deviceid": "dev1", "sequence": "17", "apikey": "k"}),
            received_at=1.0,
        )
        assert event is not None
        assert event.kind is EventKind.ACK
        assert event.device_id == "dev1"
        assert event.sequence == 17
        assert event.received_at == 1.0
        assert "apikey" not in event.payload

    def test_error_notice(self):
        """Test a non-zero error frame is an error notice."""
        event = parse_inbound({"error": 504, "deviceid": "dev1", "sequence": "5"})
        assert event is not None
        assert event.kind is EventKind.ERROR_NOTICE
        assert event.error == 504
        assert event.sequence == 5

    def test_state_update(self):
        """Test server push updates."""
        event = parse_inbound(
            '{"action":"update","deviceid":"dev1","params":{"switch":"on"}}'
        )
        assert event is not None
        assert event.kind is EventKind.STATE_UPDATE
        assert event.payload == {"switch": "on"}

    def test_liveness(self):
        """Test sysmsg frames are liveness notices."""
        event = parse_inbound(
            '{"action":"sysmsg","deviceid":"dev1","params":{"online":false}}'
        )
        assert event is not None
        assert event.kind is EventKind.LIVENESS
        assert event.payload == {"online": False}

    @pytest.mark.parametrize("raw", ["pong", '{"action":"pong"}'])
    def test_pong(self, raw):
        """Test both heartbeat reply forms."""
        event = parse_inbound(raw)
        assert event is not None
        assert event.kind is EventKind.PONG

    def test_unknown_action_ignored(self):
        """Test unknown actions yield no event."""
        assert parse_inbound('{"action":"query","deviceid":"dev1"}') is None
        assert parse_inbound("ping") is None

    @pytest.mark.parametrize(
        "raw",
        [
            "not json {",
            "[1, 2]",
            '{"action":"update","params":{}}',
            '{"action":"update","deviceid":"d","params":[1]}',
            '{"error":"x","sequence":"1"}',
        ],
    )
    def test_malformed(self, raw):
        """Test malformed frames raise SonoffProtocolViolation."""
        with pytest.raises(SonoffProtocolViolation):
            parse_inbound(raw)

    def test_decode_bytes(self):
        """Test binary frames are decoded as UTF-8 text."""
        assert decode_frame(b'{"a": 1}') == {"a": 1}
