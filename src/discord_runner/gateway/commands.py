"""
gateway/commands.py — Gateway Frame Codec (outbound)

Commands the runner (or a bot, through SendGatewayEvent) sends to the gateway.
Each serializes to {"op": <op>, "d": <payload>} via to_json_bytes().
"""

from __future__ import annotations

import json
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, Field

from discord_runner.gateway.protocol import OpCode


class GatewayCommand(BaseModel):
    """Base for outbound frames. Subclasses set `op` and may override payload()."""
    op: ClassVar[OpCode]

    def payload(self) -> Any:
        return self.model_dump(mode="json")

    def to_dict(self) -> dict[str, Any]:
        return {"op": int(self.op), "d": self.payload()}

    def to_json_bytes(self) -> bytes:
        return json.dumps(self.to_dict()).encode("utf-8")


# ─────────────────────────────────────────────────────────────────────────────
# Handshake and liveness
# ─────────────────────────────────────────────────────────────────────────────

class IdentifyProperties(BaseModel):
    os: str = "linux"
    browser: str = "discord-runner"
    device: str = "discord-runner"


class Identify(GatewayCommand):
    op: ClassVar[OpCode] = OpCode.IDENTIFY

    token: str = Field(repr=False)
    intents: int
    properties: IdentifyProperties = Field(default_factory=IdentifyProperties)
    compress: bool = False
    large_threshold: int = 50
    shard: list[int] = Field(default_factory=lambda: [0, 1])
    presence: Optional[dict[str, Any]] = None
    guild_subscriptions: Optional[bool] = None

    def payload(self) -> Any:
        return self.model_dump(mode="json", exclude_none=True)


class Resume(GatewayCommand):
    op: ClassVar[OpCode] = OpCode.RESUME

    token: str = Field(repr=False)
    session_id: str
    seq: int


class Heartbeat(GatewayCommand):
    op: ClassVar[OpCode] = OpCode.HEARTBEAT

    seq: Optional[int] = None

    def payload(self) -> Any:
        return self.seq


# ─────────────────────────────────────────────────────────────────────────────
# Bot-initiated
# ─────────────────────────────────────────────────────────────────────────────

class Activity(BaseModel):
    name: str
    type: int = 0
    url: Optional[str] = None


class UpdatePresence(GatewayCommand):
    op: ClassVar[OpCode] = OpCode.PRESENCE_UPDATE

    since: Optional[int] = None
    activities: list[Activity] = Field(default_factory=list)
    status: str = "online"
    afk: bool = False

    def payload(self) -> Any:
        d = self.model_dump(mode="json", exclude_none=True)
        # the gateway expects an explicit null for "not idle"
        d["since"] = self.since
        return d


class RequestGuildMembers(GatewayCommand):
    op: ClassVar[OpCode] = OpCode.REQUEST_GUILD_MEMBERS

    guild_id: str
    query: Optional[str] = ""
    limit: int = 0
    presences: Optional[bool] = None
    user_ids: Optional[list[str]] = None
    nonce: Optional[str] = None

    def payload(self) -> Any:
        return self.model_dump(mode="json", exclude_none=True)


def encode(command: GatewayCommand) -> bytes:
    """Serialize any outbound command to frame bytes."""
    return command.to_json_bytes()
