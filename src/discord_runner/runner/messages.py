"""
runner/messages.py — Runner Inbox Items

Everything the control loop consumes arrives through one asyncio.Queue as one
of these objects:

  Control requests (from bots)   Connect, Disconnect, SendGatewayEvent, SendHttpCall
  Transport events               ChannelOpened, FrameReceived, ChannelClosed
  Timer wake-ups                 TimerFired (context = HeartbeatContext | ReconnectContext)

Control requests carry an optional `reply` future; the runner resolves it with
the outcome so the caller can await it.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from discord_runner.gateway.commands import GatewayCommand
from discord_runner.gateway.http_api import HttpCall
from discord_runner.runner.session import BotIdentity


# ─────────────────────────────────────────────────────────────────────────────
# Control requests
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class ControlRequest:
    bot: BotIdentity
    source: str
    reply: Optional[asyncio.Future] = field(default=None, repr=False, compare=False)

    def resolve(self, value: Any) -> None:
        if self.reply is not None and not self.reply.done():
            self.reply.set_result(value)

    def fail(self, exc: BaseException) -> None:
        if self.reply is not None and not self.reply.done():
            self.reply.set_exception(exc)


@dataclass
class Connect(ControlRequest):
    """Register (or reuse) a session; `source` becomes its owner."""


@dataclass
class Disconnect(ControlRequest):
    """Remove the session and close its channel."""


@dataclass
class SendGatewayEvent(ControlRequest):
    command: Optional[GatewayCommand] = None


@dataclass
class SendHttpCall(ControlRequest):
    call: Optional[HttpCall] = None


# ─────────────────────────────────────────────────────────────────────────────
# Transport events
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class ChannelOpened:
    channel_id: int


@dataclass
class FrameReceived:
    channel_id: int
    payload: bytes
    text: bool = True


@dataclass
class ChannelClosed:
    channel_id: int
    reason: str = ""


# ─────────────────────────────────────────────────────────────────────────────
# Timers
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class TimerFired:
    context: bytes


class BotRef(BaseModel):
    token: str = Field(repr=False)
    intents: int

    @classmethod
    def of(cls, identity: BotIdentity) -> "BotRef":
        return cls(token=identity.token, intents=identity.intents)

    def identity(self) -> BotIdentity:
        return BotIdentity(token=self.token, intents=self.intents)


class HeartbeatContext(BaseModel):
    kind: Literal["heartbeat"] = "heartbeat"
    bot: BotRef
    generation: int


class ReconnectContext(BaseModel):
    kind: Literal["reconnect"] = "reconnect"
    bot: BotRef
    attempt: int


TimerContext = Annotated[Union[HeartbeatContext, ReconnectContext], Field(discriminator="kind")]

_timer_context_adapter: TypeAdapter = TypeAdapter(TimerContext)


def parse_timer_context(raw: bytes) -> Union[HeartbeatContext, ReconnectContext]:
    """Raises pydantic.ValidationError for anything that is not a known context."""
    return _timer_context_adapter.validate_json(raw)


InboxItem = Union[
    Connect, Disconnect, SendGatewayEvent, SendHttpCall,
    ChannelOpened, FrameReceived, ChannelClosed,
    TimerFired,
]
