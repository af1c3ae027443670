"""
runner/session.py — Gateway Session Record

One Session per (bot token, intents) identity. Holds the handshake state the
state machine advances and the heartbeat scheduler reads.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class BotIdentity:
    """Credential that names a bot session. Equal iff token and intents match."""
    token: str = field(repr=False)
    intents: int

    @property
    def fingerprint(self) -> str:
        """Short stable tag for logs. Never log the token itself."""
        return hashlib.sha256(self.token.encode("utf-8")).hexdigest()[:10]

    def to_dict(self) -> dict[str, Any]:
        return {"token": self.token, "intents": self.intents}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "BotIdentity":
        return cls(token=str(d["token"]), intents=int(d["intents"]))


class SessionPhase(str, Enum):
    CONNECTING     = "connecting"
    AWAITING_HELLO = "awaiting_hello"
    IDENTIFYING    = "identifying"
    READY          = "ready"
    DISCONNECTED   = "disconnected"

    @property
    def is_live(self) -> bool:
        """A transport is open and the gateway is talking to us."""
        return self in (SessionPhase.AWAITING_HELLO, SessionPhase.IDENTIFYING, SessionPhase.READY)


@dataclass
class Session:
    owner: str
    token: str = field(repr=False)
    intents: int
    channel_id: int
    phase: SessionPhase = SessionPhase.CONNECTING
    heartbeat_interval: int = 0
    sequence: int = 0
    session_id: str = ""
    resume_gateway_url: str = ""
    generation: int = 0
    heartbeat_acked: bool = True
    reconnect_attempts: int = 0

    @property
    def identity(self) -> BotIdentity:
        return BotIdentity(token=self.token, intents=self.intents)

    @property
    def is_live(self) -> bool:
        return self.phase.is_live

    def reset_connection(self) -> None:
        """Forget everything the last transport negotiated."""
        self.phase = SessionPhase.DISCONNECTED
        self.heartbeat_interval = 0
        self.sequence = 0
        self.session_id = ""
        self.resume_gateway_url = ""
        self.heartbeat_acked = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "token": self.token,
            "intents": self.intents,
            "channel_id": self.channel_id,
            "phase": self.phase.value,
            "heartbeat_interval": self.heartbeat_interval,
            "sequence": self.sequence,
            "session_id": self.session_id,
            "resume_gateway_url": self.resume_gateway_url,
            "generation": self.generation,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Session":
        return cls(
            owner=str(d["owner"]),
            token=str(d["token"]),
            intents=int(d["intents"]),
            channel_id=int(d["channel_id"]),
            phase=SessionPhase(d.get("phase", SessionPhase.DISCONNECTED.value)),
            heartbeat_interval=int(d.get("heartbeat_interval", 0)),
            sequence=int(d.get("sequence", 0)),
            session_id=str(d.get("session_id", "")),
            resume_gateway_url=str(d.get("resume_gateway_url", "")),
            generation=int(d.get("generation", 0)),
        )
