"""Gateway wire layer: event kinds, frame codec, outbound commands, HTTP calls."""

from discord_runner.gateway.commands import (
    GatewayCommand,
    Heartbeat,
    Identify,
    IdentifyProperties,
    RequestGuildMembers,
    Resume,
    UpdatePresence,
    encode,
)
from discord_runner.gateway.events import EventKind, GuildAvailability
from discord_runner.gateway.http_api import HttpCall, HttpRequest, HttpResponse
from discord_runner.gateway.protocol import (
    GatewayEnvelope,
    GatewayReceiveEvent,
    OpCode,
    decode_envelope,
    interpret,
    parse_forwarded_event,
    parse_frame,
)

__all__ = [
    "EventKind",
    "GatewayCommand",
    "GatewayEnvelope",
    "GatewayReceiveEvent",
    "GuildAvailability",
    "Heartbeat",
    "HttpCall",
    "HttpRequest",
    "HttpResponse",
    "Identify",
    "IdentifyProperties",
    "OpCode",
    "RequestGuildMembers",
    "Resume",
    "UpdatePresence",
    "decode_envelope",
    "encode",
    "interpret",
    "parse_forwarded_event",
    "parse_frame",
]
