"""
runner/heartbeat.py — Heartbeat Scheduler

Keeps each live session beating at its negotiated interval. Every wake-up is a
one-shot timer whose context names the session and the transport generation
it was scheduled for; a wake for a session that is gone, no longer live, or
was reopened since, ends that chain.
"""

from __future__ import annotations

from discord_runner.exceptions import TransportError
from discord_runner.gateway.commands import Heartbeat
from discord_runner.observability.logger import get_logger
from discord_runner.runner.capabilities import Timer, Transport
from discord_runner.runner.messages import BotRef, HeartbeatContext
from discord_runner.runner.registry import SessionRegistry
from discord_runner.runner.session import Session

log = get_logger(__name__)


class HeartbeatScheduler:
    """
    Args:
        timer:        Capability that delivers TimerFired back to the runner.
        transport:    Capability used to send the heartbeat frame.
        ack_watchdog: When True, a wake that finds the previous heartbeat
                      still un-acked closes the channel instead of sending.
    """

    def __init__(self, timer: Timer, transport: Transport, ack_watchdog: bool = False):
        self._timer = timer
        self._transport = transport
        self._ack_watchdog = ack_watchdog

    def schedule(self, session: Session, delay_ms: int) -> None:
        context = HeartbeatContext(bot=BotRef.of(session.identity), generation=session.generation)
        self._timer.set_timer(delay_ms, context.model_dump_json().encode("utf-8"))
        log.debug("heartbeat.scheduled", delay_ms=delay_ms, generation=session.generation)

    async def on_wake(self, registry: SessionRegistry, context: HeartbeatContext) -> None:
        session = registry.get(context.bot.identity())
        if session is None:
            log.debug("heartbeat.chain_ended", reason="session_gone")
            return
        if not session.is_live:
            log.debug("heartbeat.chain_ended", reason="not_live", phase=session.phase.value)
            return
        if context.generation != session.generation:
            log.debug("heartbeat.chain_ended", reason="stale", generation=context.generation)
            return

        if self._ack_watchdog and not session.heartbeat_acked:
            log.warning("heartbeat.ack_missed", channel_id=session.channel_id)
            try:
                await self._transport.close(session.channel_id)
            except TransportError as e:
                log.warning("heartbeat.close_failed", channel_id=session.channel_id, error=str(e))
            return

        frame = Heartbeat(seq=session.sequence)
        try:
            await self._transport.send(session.channel_id, frame.to_json_bytes())
            session.heartbeat_acked = False
            log.debug("heartbeat.sent", seq=session.sequence)
        except TransportError as e:
            log.warning("heartbeat.send_failed", channel_id=session.channel_id, error=str(e))

        self.schedule(session, session.heartbeat_interval)
