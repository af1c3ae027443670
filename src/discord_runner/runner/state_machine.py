"""
runner/state_machine.py — Gateway Session State Machine

Pure transition logic: each handler mutates the Session it is given and
returns the list of effects the control loop must carry out. Nothing here
performs I/O.

    connecting ──open──▶ awaiting_hello ──hello──▶ identifying ──ready──▶ ready
         ▲                                              ▲                  │
         │                          invalid_session(true)└──────────────────┤
         └──────── (reconnect policy) ◀── disconnected ◀── closed / invalid_session(false)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from discord_runner.gateway.commands import (
    GatewayCommand,
    Heartbeat,
    Identify,
    IdentifyProperties,
    Resume,
)
from discord_runner.gateway.events import EventKind, Hello, Ready
from discord_runner.gateway.protocol import GatewayReceiveEvent
from discord_runner.observability.logger import get_logger
from discord_runner.runner.session import Session, SessionPhase

log = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Effects
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SendFrame:
    command: GatewayCommand

    @property
    def payload(self) -> bytes:
        return self.command.to_json_bytes()


@dataclass(frozen=True)
class ScheduleHeartbeat:
    delay_ms: int


@dataclass(frozen=True)
class ForwardEvent:
    event: GatewayReceiveEvent


@dataclass(frozen=True)
class CloseChannel:
    pass


Effect = Union[SendFrame, ScheduleHeartbeat, ForwardEvent, CloseChannel]


# ─────────────────────────────────────────────────────────────────────────────
# Machine
# ─────────────────────────────────────────────────────────────────────────────

class SessionMachine:
    """
    Transition table for one gateway session.

    Args:
        properties:        Client metadata sent with Identify.
        large_threshold:   Identify large_threshold.
        compress:          Identify compress flag.
        lead_ms:           First heartbeat fires this long before the interval.
    """

    def __init__(
        self,
        properties: Optional[IdentifyProperties] = None,
        large_threshold: int = 50,
        compress: bool = False,
        lead_ms: int = 1000,
    ):
        self._properties = properties or IdentifyProperties()
        self._large_threshold = large_threshold
        self._compress = compress
        self._lead_ms = lead_ms

    @classmethod
    def from_settings(cls, settings) -> "SessionMachine":
        ident = settings.gateway.identify
        return cls(
            properties=IdentifyProperties(os=ident.os, browser=ident.browser, device=ident.device),
            large_threshold=ident.large_threshold,
            compress=ident.compress,
            lead_ms=settings.heartbeat.lead_ms,
        )

    # ── Transport lifecycle ───────────────────────────────────────────────────

    def on_transport_open(self, session: Session) -> list[Effect]:
        if session.phase is not SessionPhase.CONNECTING:
            log.warning("machine.unexpected_open", phase=session.phase.value)
            return []
        session.phase = SessionPhase.AWAITING_HELLO
        session.generation += 1
        session.heartbeat_acked = True
        log.info("machine.awaiting_hello", generation=session.generation)
        return []

    def on_transport_closed(self, session: Session) -> list[Effect]:
        previous = session.phase
        session.reset_connection()
        log.info("machine.disconnected", previous=previous.value)
        return []

    # ── Inbound events ────────────────────────────────────────────────────────

    def on_event(self, session: Session, event: GatewayReceiveEvent) -> list[Effect]:
        kind = event.kind
        phase = session.phase

        if kind is EventKind.HELLO and phase is SessionPhase.AWAITING_HELLO:
            return self._on_hello(session, event.data)

        if kind is EventKind.READY and phase is SessionPhase.IDENTIFYING:
            return self._on_ready(session, event)

        if kind is EventKind.RESUMED and phase in (SessionPhase.IDENTIFYING, SessionPhase.READY):
            session.phase = SessionPhase.READY
            session.reconnect_attempts = 0
            log.info("machine.resumed", seq=session.sequence)
            return [ForwardEvent(event)]

        if kind is EventKind.HEARTBEAT_ACK:
            session.heartbeat_acked = True
            return []

        if phase.is_live:
            if kind is EventKind.RECONNECT:
                log.info("machine.reconnect_requested", seq=session.sequence)
                return [SendFrame(self._resume(session))]

            if kind is EventKind.INVALID_SESSION:
                return self._on_invalid_session(session, bool(event.data))

            if kind is EventKind.HEARTBEAT:
                session.heartbeat_acked = False
                return [SendFrame(Heartbeat(seq=session.sequence))]

        if kind.is_dispatch and phase is SessionPhase.READY:
            return [ForwardEvent(event)]

        log.debug("machine.ignored", kind=kind.value, phase=phase.value)
        return []

    # ── Handlers ──────────────────────────────────────────────────────────────

    def _on_hello(self, session: Session, hello: Hello) -> list[Effect]:
        session.heartbeat_interval = hello.heartbeat_interval
        session.phase = SessionPhase.IDENTIFYING
        session.heartbeat_acked = False
        log.info("machine.hello", heartbeat_interval=hello.heartbeat_interval)
        identify = Identify(
            token=session.token,
            intents=session.intents,
            properties=self._properties,
            compress=self._compress,
            large_threshold=self._large_threshold,
        )
        return [
            ScheduleHeartbeat(max(hello.heartbeat_interval - self._lead_ms, 0)),
            SendFrame(Heartbeat(seq=None)),
            SendFrame(identify),
        ]

    def _on_ready(self, session: Session, event: GatewayReceiveEvent) -> list[Effect]:
        ready: Ready = event.data
        session.session_id = ready.session_id
        session.resume_gateway_url = ready.resume_gateway_url or ""
        session.phase = SessionPhase.READY
        session.reconnect_attempts = 0
        log.info("machine.ready", user=ready.user.username, guilds=len(ready.guilds))
        return [ForwardEvent(event)]

    def _on_invalid_session(self, session: Session, resumable: bool) -> list[Effect]:
        if resumable:
            session.phase = SessionPhase.IDENTIFYING
            log.info("machine.invalid_session", resumable=True)
            return [SendFrame(self._resume(session))]

        # A fresh Identify needs a fresh socket
        session.reset_connection()
        log.warning("machine.invalid_session", resumable=False)
        return [CloseChannel()]

    @staticmethod
    def _resume(session: Session) -> Resume:
        return Resume(token=session.token, session_id=session.session_id, seq=session.sequence)
