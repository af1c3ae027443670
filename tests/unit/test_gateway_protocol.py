"""
tests/unit/test_gateway_protocol.py — Inbound frame codec

Covers:
  - Envelope decoding accepts {op, d, s?, t?} and rejects everything else
  - Op-code events: hello, heartbeat request, reconnect, invalid session, ack
  - Dispatch by event name, case-insensitive, against the closed set
  - Sequence number is recorded before the event is decoded
  - GUILD_CREATE picks exactly one of its two shapes
  - Normalized forwarding form and its inverse
  - EventKind lookup by dispatch name
"""

from __future__ import annotations

import json

import pytest

from discord_runner.exceptions import (
    DecodeError,
    MalformedPayloadError,
    PayloadShapeMismatchError,
    UnknownEventTypeError,
)
from discord_runner.gateway.commands import Heartbeat
from discord_runner.gateway.events import EventKind, GuildAvailability, Hello, Message, Ready
from discord_runner.gateway.protocol import (
    GatewayReceiveEvent,
    OpCode,
    decode_envelope,
    interpret,
    parse_forwarded_event,
    parse_frame,
)


def _frame(op, d, s=None, t=None) -> bytes:
    body = {"op": op, "d": d}
    if s is not None:
        body["s"] = s
    if t is not None:
        body["t"] = t
    return json.dumps(body).encode()


class _Cursor:
    def __init__(self, sequence=0):
        self.sequence = sequence


_READY = {
    "v": 9,
    "user": {"id": "1", "username": "runner-bot", "bot": True},
    "session_id": "sess-1",
    "resume_gateway_url": "wss://gateway-us-east1-b.discord.gg",
    "guilds": [{"id": "10", "unavailable": True}],
    "application": {"id": "99", "flags": 0},
}

_MESSAGE = {
    "id": "500",
    "channel_id": "42",
    "author": {"id": "7", "username": "alice"},
    "content": "hello",
}


# ── Envelope ──────────────────────────────────────────────────────────────────

class TestDecodeEnvelope:
    def test_minimal_envelope(self):
        env = decode_envelope(b'{"op": 11, "d": null}')
        assert env.op == 11
        assert env.d is None
        assert env.s is None
        assert env.t is None

    def test_full_envelope(self):
        env = decode_envelope(_frame(0, {"a": 1}, s=5, t="MESSAGE_CREATE"))
        assert env.s == 5
        assert env.t == "MESSAGE_CREATE"
        assert env.d == {"a": 1}

    def test_accepts_str(self):
        assert decode_envelope('{"op": 1, "d": 3}').d == 3

    def test_not_json_is_malformed(self):
        with pytest.raises(MalformedPayloadError):
            decode_envelope(b"not json")

    def test_missing_d_is_malformed(self):
        with pytest.raises(MalformedPayloadError):
            decode_envelope(b'{"op": 1}')

    def test_missing_op_is_malformed(self):
        with pytest.raises(MalformedPayloadError):
            decode_envelope(b'{"d": null}')

    def test_array_is_malformed(self):
        with pytest.raises(MalformedPayloadError):
            decode_envelope(b"[1, 2]")

    def test_string_op_is_malformed(self):
        with pytest.raises(MalformedPayloadError):
            decode_envelope(b'{"op": "1", "d": null}')

    def test_malformed_is_a_decode_error(self):
        with pytest.raises(DecodeError):
            decode_envelope(b"")


# ── Op-code events ────────────────────────────────────────────────────────────

class TestOpCodeEvents:
    def test_hello(self):
        event = parse_frame(_frame(10, {"heartbeat_interval": 41250}))
        assert event.kind is EventKind.HELLO
        assert isinstance(event.data, Hello)
        assert event.data.heartbeat_interval == 41250

    def test_hello_without_interval_is_shape_mismatch(self):
        with pytest.raises(PayloadShapeMismatchError) as exc_info:
            parse_frame(_frame(10, {}))
        assert exc_info.value.kind == "HELLO"

    def test_heartbeat_request(self):
        assert parse_frame(_frame(1, None)).kind is EventKind.HEARTBEAT

    def test_reconnect(self):
        assert parse_frame(_frame(7, None)).kind is EventKind.RECONNECT

    def test_invalid_session_resumable(self):
        event = parse_frame(_frame(9, True))
        assert event.kind is EventKind.INVALID_SESSION
        assert event.data is True

    def test_invalid_session_not_resumable(self):
        assert parse_frame(_frame(9, False)).data is False

    def test_invalid_session_non_bool_is_shape_mismatch(self):
        with pytest.raises(PayloadShapeMismatchError):
            parse_frame(_frame(9, "yes"))

    def test_heartbeat_ack(self):
        assert parse_frame(_frame(11, None)).kind is EventKind.HEARTBEAT_ACK


# ── Dispatch events ───────────────────────────────────────────────────────────

class TestDispatch:
    def test_ready(self):
        event = parse_frame(_frame(0, _READY, s=1, t="READY"))
        assert event.kind is EventKind.READY
        assert isinstance(event.data, Ready)
        assert event.data.session_id == "sess-1"
        assert event.data.user.username == "runner-bot"

    def test_name_is_case_insensitive(self):
        event = parse_frame(_frame(0, _MESSAGE, t="message_create"))
        assert event.kind is EventKind.MESSAGE_CREATE
        assert isinstance(event.data, Message)
        assert event.data.author.id == "7"

    def test_resumed_carries_no_data(self):
        event = parse_frame(_frame(0, None, t="RESUMED"))
        assert event.kind is EventKind.RESUMED
        assert event.data is None

    def test_unknown_name(self):
        with pytest.raises(UnknownEventTypeError) as exc_info:
            parse_frame(_frame(0, {}, t="FOO_BAR_BAZ"))
        assert exc_info.value.name == "FOO_BAR_BAZ"

    def test_dispatch_without_name_is_unknown(self):
        with pytest.raises(UnknownEventTypeError):
            parse_frame(_frame(0, {}))

    def test_control_name_not_accepted_as_dispatch(self):
        with pytest.raises(UnknownEventTypeError):
            parse_frame(_frame(0, {"heartbeat_interval": 1}, t="HELLO"))

    def test_shape_mismatch_names_kind(self):
        with pytest.raises(PayloadShapeMismatchError) as exc_info:
            parse_frame(_frame(0, {"id": "1"}, t="MESSAGE_CREATE"))
        assert exc_info.value.kind == "MESSAGE_CREATE"

    def test_non_object_data_is_shape_mismatch(self):
        with pytest.raises(PayloadShapeMismatchError):
            parse_frame(_frame(0, [1, 2], t="CHANNEL_PINS_UPDATE"))

    def test_untyped_kind_keeps_payload(self):
        event = parse_frame(_frame(0, {"guild_id": "1", "channel_id": "2"}, t="WEBHOOKS_UPDATE"))
        assert event.kind is EventKind.WEBHOOKS_UPDATE
        assert event.data_json() == {"guild_id": "1", "channel_id": "2"}

    def test_extra_fields_survive(self):
        payload = dict(_MESSAGE, pinned=False, embeds=[])
        event = parse_frame(_frame(0, payload, t="MESSAGE_CREATE"))
        assert event.data_json()["pinned"] is False
        assert event.data_json()["embeds"] == []


# ── Sequence cursor ───────────────────────────────────────────────────────────

class TestSequence:
    def test_sequence_recorded(self):
        cursor = _Cursor()
        parse_frame(_frame(0, _MESSAGE, s=17, t="MESSAGE_CREATE"), cursor)
        assert cursor.sequence == 17

    def test_absent_sequence_leaves_cursor(self):
        cursor = _Cursor(sequence=4)
        parse_frame(_frame(11, None), cursor)
        assert cursor.sequence == 4

    def test_sequence_recorded_even_for_unknown_event(self):
        cursor = _Cursor()
        with pytest.raises(UnknownEventTypeError):
            parse_frame(_frame(0, {}, s=9, t="FOO_BAR_BAZ"), cursor)
        assert cursor.sequence == 9

    def test_sequence_recorded_even_for_shape_mismatch(self):
        cursor = _Cursor()
        with pytest.raises(PayloadShapeMismatchError):
            interpret(decode_envelope(_frame(0, {}, s=3, t="READY")), cursor)
        assert cursor.sequence == 3

    def test_sequence_may_go_backwards(self):
        cursor = _Cursor(sequence=50)
        parse_frame(_frame(0, None, s=2, t="RESUMED"), cursor)
        assert cursor.sequence == 2


# ── GUILD_CREATE ──────────────────────────────────────────────────────────────

class TestGuildCreate:
    def test_full_guild(self):
        event = parse_frame(_frame(0, {"id": "1", "name": "g", "owner_id": "2"}, t="GUILD_CREATE"))
        assert isinstance(event.data, GuildAvailability)
        assert event.data.guild is not None
        assert event.data.unavailable is None
        assert event.data.guild_id == "1"

    def test_unavailable_guild(self):
        event = parse_frame(_frame(0, {"id": "1", "unavailable": True}, t="GUILD_CREATE"))
        assert event.data.guild is None
        assert event.data.unavailable.unavailable is True

    def test_neither_shape(self):
        with pytest.raises(PayloadShapeMismatchError) as exc_info:
            parse_frame(_frame(0, {"name": "no id"}, t="GUILD_CREATE"))
        assert exc_info.value.kind == "GUILD_CREATE"

    def test_forwarded_json_is_the_payload(self):
        payload = {"id": "1", "name": "g", "owner_id": "2"}
        event = parse_frame(_frame(0, payload, t="GUILD_CREATE"))
        assert event.to_dict() == {"type": "GUILD_CREATE", "data": payload}


# ── Normalized forwarding ─────────────────────────────────────────────────────

class TestForwardedEvent:
    def test_to_json_shape(self):
        event = parse_frame(_frame(0, _READY, t="READY"))
        body = json.loads(event.to_json())
        assert body["type"] == "READY"
        assert body["data"]["session_id"] == "sess-1"
        assert body["data"]["guilds"] == [{"id": "10", "unavailable": True}]

    def test_parse_back(self):
        event = parse_frame(_frame(0, _MESSAGE, t="MESSAGE_CREATE"))
        back = parse_forwarded_event(event.to_json())
        assert back.kind is EventKind.MESSAGE_CREATE
        assert back.data.content == "hello"

    def test_parse_back_unknown_type(self):
        with pytest.raises(UnknownEventTypeError):
            parse_forwarded_event(json.dumps({"type": "NOPE", "data": {}}))

    def test_parse_back_requires_type_and_data(self):
        with pytest.raises(MalformedPayloadError):
            parse_forwarded_event(json.dumps({"type": "READY"}))
        with pytest.raises(MalformedPayloadError):
            parse_forwarded_event(b"{{")

    def test_event_is_frozen(self):
        event = GatewayReceiveEvent(kind=EventKind.RESUMED)
        with pytest.raises(AttributeError):
            event.kind = EventKind.READY


# ── Outbound heartbeat decodes back ───────────────────────────────────────────

class TestHeartbeatEnvelope:
    @pytest.mark.parametrize("seq", [None, 0, 1, 251, 2**40])
    def test_heartbeat_bytes_decode(self, seq):
        env = decode_envelope(Heartbeat(seq=seq).to_json_bytes())
        assert env.op == OpCode.HEARTBEAT
        assert env.d == seq


# ── Event kinds ─────────────────────────────────────────────────────────────────

class TestEventKind:
    def test_lookup_is_case_insensitive(self):
        assert EventKind.from_dispatch_name("guild_create") is EventKind.GUILD_CREATE
        assert EventKind.from_dispatch_name("Ready") is EventKind.READY

    def test_control_kinds_are_not_dispatch(self):
        assert EventKind.from_dispatch_name("HEARTBEAT_ACK") is None
        assert not EventKind.HELLO.is_dispatch
        assert EventKind.RESUMED.is_dispatch

    def test_auto_moderation_names(self):
        assert EventKind.from_dispatch_name("AUTO_MODERATION_RULE_CREATE") is EventKind.AUTO_MODERATION_RULE_CREATE
