"""
runner/registry.py — Session Registry

Owns every Session the runner manages. Maps bot identity → Session and
transport channel id → identity, and keeps the two maps consistent.

Only the runner's control loop touches the registry, so there is no lock.
"""

from __future__ import annotations

import json
from typing import Iterator, Optional

from discord_runner.exceptions import SessionExistsError, StateLoadError
from discord_runner.observability.logger import get_logger
from discord_runner.runner.session import BotIdentity, Session, SessionPhase

log = get_logger(__name__)

_STATE_VERSION = 1


class SessionRegistry:
    """
    identity → Session and channel_id → identity.

    Channel ids are allocated sequentially and never reused within a process.
    """

    def __init__(self) -> None:
        self._sessions: dict[BotIdentity, Session] = {}
        self._channels: dict[int, BotIdentity] = {}
        self._next_channel = 0

    # ── Mutation ──────────────────────────────────────────────────────────────

    def insert(self, identity: BotIdentity, owner: str) -> int:
        """Register a new session in the Connecting phase. Returns its channel id."""
        if identity in self._sessions:
            raise SessionExistsError(f"Session already registered for bot {identity.fingerprint}")

        channel_id = max(self._next_channel, len(self._sessions))
        self._next_channel = channel_id + 1

        session = Session(
            owner=owner,
            token=identity.token,
            intents=identity.intents,
            channel_id=channel_id,
        )
        self._sessions[identity] = session
        self._channels[channel_id] = identity
        log.info("registry.inserted", bot=identity.fingerprint, channel_id=channel_id, owner=owner)
        return channel_id

    def remove(self, identity: BotIdentity) -> Optional[Session]:
        """Delete both mappings for `identity`. Returns the removed session, if any."""
        session = self._sessions.pop(identity, None)
        if session is None:
            return None
        self._channels.pop(session.channel_id, None)
        log.info("registry.removed", bot=identity.fingerprint, channel_id=session.channel_id)
        return session

    # ── Lookup ────────────────────────────────────────────────────────────────

    def get(self, identity: BotIdentity) -> Optional[Session]:
        return self._sessions.get(identity)

    def get_by_channel(self, channel_id: int) -> Optional[Session]:
        identity = self._channels.get(channel_id)
        if identity is None:
            return None
        return self._sessions.get(identity)

    def __contains__(self, identity: object) -> bool:
        return identity in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def __len__(self) -> int:
        return len(self._sessions)

    @property
    def count(self) -> int:
        return len(self._sessions)

    # ── Persistence ───────────────────────────────────────────────────────────

    def dump(self) -> bytes:
        """Serialize all sessions for the state store."""
        state = {
            "version": _STATE_VERSION,
            "next_channel": self._next_channel,
            "sessions": [s.to_dict() for s in self._sessions.values()],
        }
        return json.dumps(state).encode("utf-8")

    @classmethod
    def load(cls, raw: Optional[bytes]) -> "SessionRegistry":
        """
        Rebuild a registry from dump() output.

        Sockets do not survive a restart, so every restored session comes back
        Disconnected with its connection fields cleared. Empty or missing input
        yields an empty registry; anything undecodable raises StateLoadError.
        """
        registry = cls()
        if not raw:
            return registry

        try:
            state = json.loads(raw)
            sessions = [Session.from_dict(d) for d in state["sessions"]]
            next_channel = int(state.get("next_channel", 0))
        except (ValueError, KeyError, TypeError) as e:
            raise StateLoadError(f"Persisted registry state is unreadable: {e}") from e

        for session in sessions:
            if session.channel_id in registry._channels:
                raise StateLoadError(f"Duplicate channel id {session.channel_id} in persisted state")
            session.reset_connection()
            registry._sessions[session.identity] = session
            registry._channels[session.channel_id] = session.identity

        highest = max(registry._channels, default=-1)
        registry._next_channel = max(next_channel, highest + 1)
        log.info("registry.loaded", sessions=len(sessions))
        return registry
