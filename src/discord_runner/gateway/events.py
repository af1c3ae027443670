"""
gateway/events.py — Gateway Event Kinds and Typed Payloads

The closed set of event kinds the runner recognises, and the pydantic shapes
their `d` payloads decode into. Only the fields the runner and the bundled
bots read are declared; every model keeps unknown fields (extra="allow") so a
forwarded event carries the full payload the gateway sent.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from discord_runner.exceptions import PayloadShapeMismatchError


# ─────────────────────────────────────────────────────────────────────────────
# Event kinds
# ─────────────────────────────────────────────────────────────────────────────

class EventKind(str, Enum):
    """Every event the codec can produce. Values are the gateway's names."""

    # Control events, selected by op code
    HELLO                                  = "HELLO"
    HEARTBEAT                              = "HEARTBEAT"
    HEARTBEAT_ACK                          = "HEARTBEAT_ACK"
    RECONNECT                              = "RECONNECT"
    INVALID_SESSION                        = "INVALID_SESSION"

    # Dispatch events (op 0), selected by the `t` field
    READY                                  = "READY"
    RESUMED                                = "RESUMED"
    APPLICATION_COMMAND_PERMISSIONS_UPDATE = "APPLICATION_COMMAND_PERMISSIONS_UPDATE"
    AUTO_MODERATION_RULE_CREATE            = "AUTO_MODERATION_RULE_CREATE"
    AUTO_MODERATION_RULE_UPDATE            = "AUTO_MODERATION_RULE_UPDATE"
    AUTO_MODERATION_RULE_DELETE            = "AUTO_MODERATION_RULE_DELETE"
    AUTO_MODERATION_ACTION_EXECUTION       = "AUTO_MODERATION_ACTION_EXECUTION"
    CHANNEL_CREATE                         = "CHANNEL_CREATE"
    CHANNEL_UPDATE                         = "CHANNEL_UPDATE"
    CHANNEL_DELETE                         = "CHANNEL_DELETE"
    CHANNEL_PINS_UPDATE                    = "CHANNEL_PINS_UPDATE"
    THREAD_CREATE                          = "THREAD_CREATE"
    THREAD_UPDATE                          = "THREAD_UPDATE"
    THREAD_DELETE                          = "THREAD_DELETE"
    THREAD_LIST_SYNC                       = "THREAD_LIST_SYNC"
    THREAD_MEMBER_UPDATE                   = "THREAD_MEMBER_UPDATE"
    THREAD_MEMBERS_UPDATE                  = "THREAD_MEMBERS_UPDATE"
    ENTITLEMENT_CREATE                     = "ENTITLEMENT_CREATE"
    ENTITLEMENT_UPDATE                     = "ENTITLEMENT_UPDATE"
    ENTITLEMENT_DELETE                     = "ENTITLEMENT_DELETE"
    GUILD_CREATE                           = "GUILD_CREATE"
    GUILD_UPDATE                           = "GUILD_UPDATE"
    GUILD_DELETE                           = "GUILD_DELETE"
    GUILD_AUDIT_LOG_ENTRY_CREATE           = "GUILD_AUDIT_LOG_ENTRY_CREATE"
    GUILD_BAN_ADD                          = "GUILD_BAN_ADD"
    GUILD_BAN_REMOVE                       = "GUILD_BAN_REMOVE"
    GUILD_EMOJIS_UPDATE                    = "GUILD_EMOJIS_UPDATE"
    GUILD_STICKERS_UPDATE                  = "GUILD_STICKERS_UPDATE"
    GUILD_INTEGRATIONS_UPDATE              = "GUILD_INTEGRATIONS_UPDATE"
    GUILD_MEMBER_ADD                       = "GUILD_MEMBER_ADD"
    GUILD_MEMBER_REMOVE                    = "GUILD_MEMBER_REMOVE"
    GUILD_MEMBER_UPDATE                    = "GUILD_MEMBER_UPDATE"
    GUILD_MEMBERS_CHUNK                    = "GUILD_MEMBERS_CHUNK"
    GUILD_ROLE_CREATE                      = "GUILD_ROLE_CREATE"
    GUILD_ROLE_UPDATE                      = "GUILD_ROLE_UPDATE"
    GUILD_ROLE_DELETE                      = "GUILD_ROLE_DELETE"
    GUILD_SCHEDULED_EVENT_CREATE           = "GUILD_SCHEDULED_EVENT_CREATE"
    GUILD_SCHEDULED_EVENT_UPDATE           = "GUILD_SCHEDULED_EVENT_UPDATE"
    GUILD_SCHEDULED_EVENT_DELETE           = "GUILD_SCHEDULED_EVENT_DELETE"
    GUILD_SCHEDULED_EVENT_USER_ADD         = "GUILD_SCHEDULED_EVENT_USER_ADD"
    GUILD_SCHEDULED_EVENT_USER_REMOVE      = "GUILD_SCHEDULED_EVENT_USER_REMOVE"
    INTEGRATION_CREATE                     = "INTEGRATION_CREATE"
    INTEGRATION_UPDATE                     = "INTEGRATION_UPDATE"
    INTEGRATION_DELETE                     = "INTEGRATION_DELETE"
    INTERACTION_CREATE                     = "INTERACTION_CREATE"
    INVITE_CREATE                          = "INVITE_CREATE"
    INVITE_DELETE                          = "INVITE_DELETE"
    MESSAGE_CREATE                         = "MESSAGE_CREATE"
    MESSAGE_UPDATE                         = "MESSAGE_UPDATE"
    MESSAGE_DELETE                         = "MESSAGE_DELETE"
    MESSAGE_DELETE_BULK                    = "MESSAGE_DELETE_BULK"
    MESSAGE_REACTION_ADD                   = "MESSAGE_REACTION_ADD"
    MESSAGE_REACTION_REMOVE                = "MESSAGE_REACTION_REMOVE"
    MESSAGE_REACTION_REMOVE_ALL            = "MESSAGE_REACTION_REMOVE_ALL"
    MESSAGE_REACTION_REMOVE_EMOJI          = "MESSAGE_REACTION_REMOVE_EMOJI"
    PRESENCE_UPDATE                        = "PRESENCE_UPDATE"
    STAGE_INSTANCE_CREATE                  = "STAGE_INSTANCE_CREATE"
    STAGE_INSTANCE_UPDATE                  = "STAGE_INSTANCE_UPDATE"
    STAGE_INSTANCE_DELETE                  = "STAGE_INSTANCE_DELETE"
    TYPING_START                           = "TYPING_START"
    USER_UPDATE                            = "USER_UPDATE"
    VOICE_STATE_UPDATE                     = "VOICE_STATE_UPDATE"
    VOICE_SERVER_UPDATE                    = "VOICE_SERVER_UPDATE"
    WEBHOOKS_UPDATE                        = "WEBHOOKS_UPDATE"

    @classmethod
    def from_dispatch_name(cls, name: str) -> Optional["EventKind"]:
        """Case-insensitive lookup of a dispatch `t` name. None if unrecognised."""
        try:
            kind = cls(name.upper())
        except ValueError:
            return None
        return kind if kind in DISPATCH_KINDS else None

    @property
    def is_dispatch(self) -> bool:
        return self in DISPATCH_KINDS


CONTROL_KINDS = frozenset({
    EventKind.HELLO,
    EventKind.HEARTBEAT,
    EventKind.HEARTBEAT_ACK,
    EventKind.RECONNECT,
    EventKind.INVALID_SESSION,
})

DISPATCH_KINDS = frozenset(k for k in EventKind if k not in CONTROL_KINDS)


# ─────────────────────────────────────────────────────────────────────────────
# Payload shapes
# ─────────────────────────────────────────────────────────────────────────────

class EventData(BaseModel):
    """Any JSON object. Used for kinds whose fields the runner never reads."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class User(EventData):
    id: str
    username: str
    discriminator: Optional[str] = None
    global_name: Optional[str] = None
    bot: Optional[bool] = None


class PartialApplication(EventData):
    id: str
    flags: Optional[int] = None


class Hello(EventData):
    heartbeat_interval: int


class Ready(EventData):
    v: int
    user: User
    session_id: str
    resume_gateway_url: Optional[str] = None
    application: Optional[PartialApplication] = None
    # Entries are Guild or UnavailableGuild objects; kept loose
    guilds: list[dict[str, Any]] = Field(default_factory=list)
    shard: Optional[list[int]] = None


class Guild(EventData):
    id: str
    name: str
    owner_id: str
    unavailable: Optional[bool] = None


class UnavailableGuild(EventData):
    id: str
    unavailable: bool


class GuildAvailability(BaseModel):
    """A guild became available: exactly one of the two shapes is set."""
    guild: Optional[Guild] = None
    unavailable: Optional[UnavailableGuild] = None

    @model_validator(mode="after")
    def _exactly_one(self) -> "GuildAvailability":
        if (self.guild is None) == (self.unavailable is None):
            raise ValueError("exactly one of guild / unavailable must be set")
        return self

    @property
    def guild_id(self) -> str:
        return self.guild.id if self.guild is not None else self.unavailable.id

    def payload(self) -> dict[str, Any]:
        shape = self.guild if self.guild is not None else self.unavailable
        return shape.model_dump(mode="json", by_alias=True, exclude_unset=True)


class Channel(EventData):
    id: str
    type: int
    guild_id: Optional[str] = None
    name: Optional[str] = None


class GuildMember(EventData):
    user: Optional[User] = None
    nick: Optional[str] = None
    roles: list[str] = Field(default_factory=list)
    guild_id: Optional[str] = None


class Message(EventData):
    id: str
    channel_id: str
    author: User
    content: str = ""
    guild_id: Optional[str] = None
    timestamp: Optional[str] = None


class MessageDelete(EventData):
    id: str
    channel_id: str
    guild_id: Optional[str] = None


class Interaction(EventData):
    id: str
    application_id: str
    type: int
    token: str
    data: Optional[dict[str, Any]] = None
    guild_id: Optional[str] = None
    channel_id: Optional[str] = None
    member: Optional[GuildMember] = None
    user: Optional[User] = None


class TypingStart(EventData):
    channel_id: str
    user_id: str
    timestamp: int
    guild_id: Optional[str] = None


class PresenceUpdate(EventData):
    user: dict[str, Any]
    guild_id: Optional[str] = None
    status: Optional[str] = None


EventPayload = Union[EventData, GuildAvailability, bool, None]


# ─────────────────────────────────────────────────────────────────────────────
# Decode table
# ─────────────────────────────────────────────────────────────────────────────

_PAYLOAD_MODELS: dict[EventKind, type[EventData]] = {
    EventKind.HELLO:                 Hello,
    EventKind.READY:                 Ready,
    EventKind.CHANNEL_CREATE:        Channel,
    EventKind.CHANNEL_UPDATE:        Channel,
    EventKind.CHANNEL_DELETE:        Channel,
    EventKind.THREAD_CREATE:         Channel,
    EventKind.THREAD_UPDATE:         Channel,
    EventKind.GUILD_UPDATE:          Guild,
    EventKind.GUILD_DELETE:          UnavailableGuild,
    EventKind.GUILD_MEMBER_ADD:      GuildMember,
    EventKind.GUILD_MEMBER_UPDATE:   GuildMember,
    EventKind.INTERACTION_CREATE:    Interaction,
    EventKind.MESSAGE_CREATE:        Message,
    EventKind.MESSAGE_UPDATE:        Message,
    EventKind.MESSAGE_DELETE:        MessageDelete,
    EventKind.PRESENCE_UPDATE:       PresenceUpdate,
    EventKind.TYPING_START:          TypingStart,
    EventKind.USER_UPDATE:           User,
}

# Kinds whose `d` carries nothing the runner reads
_EMPTY_KINDS = frozenset({
    EventKind.HEARTBEAT,
    EventKind.HEARTBEAT_ACK,
    EventKind.RECONNECT,
    EventKind.RESUMED,
})


def decode_event_data(kind: EventKind, payload: Any) -> EventPayload:
    """
    Decode a raw `d` value into the typed shape for `kind`.

    Raises PayloadShapeMismatchError when the value does not fit.
    """
    if kind in _EMPTY_KINDS:
        return None

    if kind is EventKind.INVALID_SESSION:
        if not isinstance(payload, bool):
            raise PayloadShapeMismatchError(kind.value)
        return payload

    if kind is EventKind.GUILD_CREATE:
        return _decode_guild_availability(payload)

    model = _PAYLOAD_MODELS.get(kind, EventData)
    if not isinstance(payload, dict):
        raise PayloadShapeMismatchError(kind.value)
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise PayloadShapeMismatchError(kind.value, f"Failed to parse {kind.value} event data: {e.error_count()} error(s)") from e


def _decode_guild_availability(payload: Any) -> GuildAvailability:
    if not isinstance(payload, dict):
        raise PayloadShapeMismatchError(EventKind.GUILD_CREATE.value)
    try:
        guild = Guild.model_validate(payload)
    except ValidationError:
        guild = None
    if guild is not None:
        return GuildAvailability(guild=guild)
    try:
        return GuildAvailability(unavailable=UnavailableGuild.model_validate(payload))
    except ValidationError as e:
        raise PayloadShapeMismatchError(EventKind.GUILD_CREATE.value) from e
