"""
gateway/protocol.py — Gateway Frame Codec (inbound)

Every gateway frame is a JSON envelope {"op", "d", "s"?, "t"?}.
decode_envelope() validates the envelope; interpret() turns it into a typed
GatewayReceiveEvent and advances the session's sequence cursor.

The normalized form forwarded to bots is {"type": <EVENT_NAME>, "data": {...}}.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, StrictInt, ValidationError

from discord_runner.exceptions import MalformedPayloadError, UnknownEventTypeError
from discord_runner.gateway.events import (
    EventData,
    EventKind,
    EventPayload,
    GuildAvailability,
    decode_event_data,
)


# ─────────────────────────────────────────────────────────────────────────────
# Op codes
# ─────────────────────────────────────────────────────────────────────────────

class OpCode(IntEnum):
    DISPATCH              = 0
    HEARTBEAT             = 1
    IDENTIFY              = 2
    PRESENCE_UPDATE       = 3
    RESUME                = 6
    RECONNECT             = 7
    REQUEST_GUILD_MEMBERS = 8
    INVALID_SESSION       = 9
    HELLO                 = 10
    HEARTBEAT_ACK         = 11


_OP_KINDS: dict[int, EventKind] = {
    OpCode.HEARTBEAT:       EventKind.HEARTBEAT,
    OpCode.RECONNECT:       EventKind.RECONNECT,
    OpCode.INVALID_SESSION: EventKind.INVALID_SESSION,
    OpCode.HELLO:           EventKind.HELLO,
    OpCode.HEARTBEAT_ACK:   EventKind.HEARTBEAT_ACK,
}


# ─────────────────────────────────────────────────────────────────────────────
# Envelope
# ─────────────────────────────────────────────────────────────────────────────

class GatewayEnvelope(BaseModel):
    """Minimal frame shape. `d` is required but may be null."""
    model_config = ConfigDict(extra="ignore")

    op: StrictInt
    d: Any
    s: Optional[StrictInt] = None
    t: Optional[str] = None


class SequenceCursor(Protocol):
    """Anything holding the last seen sequence number (a Session does)."""
    sequence: int


def decode_envelope(raw: Union[bytes, str]) -> GatewayEnvelope:
    """Parse raw frame bytes. Raises MalformedPayloadError on any failure."""
    try:
        return GatewayEnvelope.model_validate_json(raw)
    except ValidationError as e:
        raise MalformedPayloadError(f"Malformed gateway frame: {e.error_count()} error(s)") from e


# ─────────────────────────────────────────────────────────────────────────────
# Typed events
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GatewayReceiveEvent:
    """One decoded inbound event: its kind and typed payload."""
    kind: EventKind
    data: EventPayload = None

    def data_json(self) -> Any:
        if isinstance(self.data, GuildAvailability):
            return self.data.payload()
        if isinstance(self.data, EventData):
            return self.data.model_dump(mode="json", by_alias=True, exclude_unset=True)
        return self.data

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind.value, "data": self.data_json()}

    def to_json(self) -> str:
        """Normalized form forwarded to the owning bot."""
        return json.dumps(self.to_dict())


def interpret(envelope: GatewayEnvelope, cursor: Optional[SequenceCursor] = None) -> GatewayReceiveEvent:
    """
    Turn an envelope into a typed event.

    The sequence number is recorded on `cursor` before anything else, so it
    advances even when the event itself fails to decode.
    """
    if envelope.s is not None and cursor is not None:
        cursor.sequence = envelope.s

    kind = _OP_KINDS.get(envelope.op)
    if kind is None:
        name = envelope.t or ""
        kind = EventKind.from_dispatch_name(name)
        if kind is None:
            raise UnknownEventTypeError(name)

    return GatewayReceiveEvent(kind=kind, data=decode_event_data(kind, envelope.d))


def parse_frame(raw: Union[bytes, str], cursor: Optional[SequenceCursor] = None) -> GatewayReceiveEvent:
    """decode_envelope() followed by interpret()."""
    return interpret(decode_envelope(raw), cursor)


def parse_forwarded_event(raw: Union[bytes, str]) -> GatewayReceiveEvent:
    """Inverse of GatewayReceiveEvent.to_json(), used on the bot side."""
    try:
        body = json.loads(raw)
    except ValueError as e:
        raise MalformedPayloadError("Forwarded event is not JSON") from e
    if not isinstance(body, dict) or not isinstance(body.get("type"), str) or "data" not in body:
        raise MalformedPayloadError("Forwarded event lacks type/data")
    try:
        kind = EventKind(body["type"].upper())
    except ValueError as e:
        raise UnknownEventTypeError(body["type"]) from e
    return GatewayReceiveEvent(kind=kind, data=decode_event_data(kind, body["data"]))
