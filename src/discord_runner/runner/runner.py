"""
runner/runner.py — Gateway Runner Control Loop

One asyncio task pulls items off the inbox and dispatches each to exactly one
handler, in this order:

  1. control requests   Connect / Disconnect / SendGatewayEvent / SendHttpCall
  2. transport events   ChannelOpened / FrameReceived / ChannelClosed
  3. timer wake-ups     heartbeat or reconnect

Anything else is logged and dropped. A handler that raises is logged; the loop
keeps going. Only this task mutates the registry.
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Optional

from pydantic import ValidationError

from discord_runner.config.settings import DISCORD_GATEWAY, DISCORD_HTTP_URL, ReconnectConfig
from discord_runner.exceptions import (
    DecodeError,
    DeliveryError,
    SessionNotFoundError,
    SessionNotReadyError,
    TransportError,
)
from discord_runner.gateway.http_api import HttpRequest, build_request
from discord_runner.gateway.protocol import parse_frame
from discord_runner.observability.logger import bind_bot, clear_bot, get_logger
from discord_runner.runner.capabilities import HttpTransport, Messenger, StateStore, Timer, Transport
from discord_runner.runner.heartbeat import HeartbeatScheduler
from discord_runner.runner.messages import (
    BotRef,
    ChannelClosed,
    ChannelOpened,
    Connect,
    Disconnect,
    FrameReceived,
    HeartbeatContext,
    ReconnectContext,
    SendGatewayEvent,
    SendHttpCall,
    TimerFired,
    parse_timer_context,
)
from discord_runner.runner.registry import SessionRegistry
from discord_runner.runner.session import Session, SessionPhase
from discord_runner.runner.state_machine import (
    CloseChannel,
    Effect,
    ForwardEvent,
    ScheduleHeartbeat,
    SendFrame,
    SessionMachine,
)

log = get_logger(__name__)


class GatewayRunner:
    """
    Owns every bot's gateway session.

    Args:
        inbox:        Queue every capability and caller posts into.
        transport:    WebSocket capability.
        timer:        One-shot timer capability (fires into `inbox`).
        store:        Persisted registry state.
        messenger:    Delivers forwarded events to session owners.
        http:         HTTP capability for SendHttpCall.
        machine:      Session state machine; defaults to a stock one.
        gateway_url:  URL every channel is opened against.
        http_base_url / user_agent: used to build HTTP requests.
        ack_watchdog: Close channels whose heartbeat went un-acked.
        reconnect:    Reconnect policy; disabled when None.
    """

    def __init__(
        self,
        inbox: asyncio.Queue,
        transport: Transport,
        timer: Timer,
        store: StateStore,
        messenger: Messenger,
        http: HttpTransport,
        *,
        machine: Optional[SessionMachine] = None,
        gateway_url: str = DISCORD_GATEWAY,
        http_base_url: str = DISCORD_HTTP_URL,
        user_agent: str = "DiscordBot (https://github.com/discord-runner/discord-runner, 1.0)",
        ack_watchdog: bool = False,
        reconnect: Optional[ReconnectConfig] = None,
    ):
        self._inbox = inbox
        self._transport = transport
        self._store = store
        self._messenger = messenger
        self._http = http
        self._reconnect = reconnect or ReconnectConfig(enabled=False)
        self._machine = machine or SessionMachine()
        self._heartbeat = HeartbeatScheduler(timer, transport, ack_watchdog=ack_watchdog)
        self._timer = timer
        self._gateway_url = gateway_url
        self._http_base_url = http_base_url
        self._user_agent = user_agent

        self._registry = SessionRegistry()
        self._tasks: set[asyncio.Task] = set()
        # Channels whose ChannelOpened was handled and whose ChannelClosed was not
        self._live_channels: set[int] = set()
        # ChannelClosed items still owed by sockets closed ahead of a reopen
        self._stale_closes: dict[int, int] = {}
        self._started = False
        self._running = False

    @classmethod
    def from_settings(
        cls,
        settings,
        inbox: asyncio.Queue,
        transport: Transport,
        timer: Timer,
        store: StateStore,
        messenger: Messenger,
        http: HttpTransport,
    ) -> "GatewayRunner":
        return cls(
            inbox,
            transport,
            timer,
            store,
            messenger,
            http,
            machine=SessionMachine.from_settings(settings),
            gateway_url=settings.gateway.url,
            http_base_url=settings.http.base_url,
            user_agent=settings.user_agent,
            ack_watchdog=settings.heartbeat.ack_watchdog,
            reconnect=settings.reconnect,
        )

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def inbox(self) -> asyncio.Queue:
        return self._inbox

    def submit(self, item: Any) -> None:
        self._inbox.put_nowait(item)

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """
        Restore persisted sessions. Raises StateLoadError on a corrupt blob.

        Restored sessions are reopened only when the reconnect policy is on.
        """
        if self._started:
            return
        self._registry = SessionRegistry.load(self._store.load())
        self._started = True
        log.info("runner.started", sessions=self._registry.count, reconnect=self._reconnect.enabled)

        if self._reconnect.enabled:
            for session in self._registry:
                self._open_channel(session)

    async def run(self) -> None:
        await self.start()
        self._running = True
        try:
            while self._running:
                item = await self._inbox.get()
                await self.handle(item)
        finally:
            self._running = False

    async def drain(self) -> int:
        """Handle every item already queued. Returns how many were handled."""
        handled = 0
        while not self._inbox.empty():
            await self.handle(self._inbox.get_nowait())
            handled += 1
        return handled

    async def stop(self) -> None:
        self._running = False
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        log.info("runner.stopped")

    # ─────────────────────────────────────────────────────────────────────────
    # Dispatch
    # ─────────────────────────────────────────────────────────────────────────

    async def handle(self, item: Any) -> None:
        """Route one inbox item. Never raises."""
        try:
            if isinstance(item, Connect):
                await self._on_connect(item)
            elif isinstance(item, Disconnect):
                await self._on_disconnect(item)
            elif isinstance(item, SendGatewayEvent):
                await self._on_send_gateway_event(item)
            elif isinstance(item, SendHttpCall):
                await self._on_send_http_call(item)
            elif isinstance(item, ChannelOpened):
                await self._on_channel_opened(item)
            elif isinstance(item, FrameReceived):
                await self._on_frame(item)
            elif isinstance(item, ChannelClosed):
                await self._on_channel_closed(item)
            elif isinstance(item, TimerFired):
                await self._on_timer(item)
            else:
                log.warning("runner.unhandled_item", item_type=type(item).__name__)
        except Exception as e:
            log.exception("runner.handler_failed", item_type=type(item).__name__, error=str(e))
            fail = getattr(item, "fail", None)
            if callable(fail):
                fail(e)
        finally:
            clear_bot()

    # ── Control requests ──────────────────────────────────────────────────────

    async def _on_connect(self, req: Connect) -> None:
        session = self._registry.get(req.bot)
        if session is None:
            self._registry.insert(req.bot, req.source)
            session = self._registry.get(req.bot)
            self._bind(session)
            log.info("runner.connect", owner=req.source)
            self._open_channel(session)
        else:
            self._bind(session)
            session.owner = req.source
            if session.phase is SessionPhase.DISCONNECTED:
                log.info("runner.connect_reopen", owner=req.source)
                self._open_channel(session)
            else:
                log.info("runner.connect_reuse", owner=req.source, phase=session.phase.value)

        self._persist()
        req.resolve(session.channel_id)

    async def _on_disconnect(self, req: Disconnect) -> None:
        session = self._registry.remove(req.bot)
        if session is None:
            log.info("runner.disconnect_unknown", bot=req.bot.fingerprint)
            req.resolve(False)
            return

        self._bind(session)
        session.reset_connection()
        self._spawn(self._close_channel(session.channel_id), f"close-{session.channel_id}")
        self._persist()
        log.info("runner.disconnect")
        req.resolve(True)

    async def _on_send_gateway_event(self, req: SendGatewayEvent) -> None:
        session = self._registry.get(req.bot)
        if session is None:
            req.fail(SessionNotFoundError(f"No session for bot {req.bot.fingerprint}"))
            return
        self._bind(session)
        if session.phase is not SessionPhase.READY:
            req.fail(SessionNotReadyError(f"Session is {session.phase.value}, not ready"))
            return
        if req.command is None:
            req.fail(ValueError("SendGatewayEvent carries no command"))
            return

        try:
            await self._transport.send(session.channel_id, req.command.to_json_bytes())
        except TransportError as e:
            log.warning("runner.gateway_send_failed", error=str(e))
            req.fail(e)
            return
        log.debug("runner.gateway_event_sent", op=int(req.command.op))
        req.resolve(True)

    async def _on_send_http_call(self, req: SendHttpCall) -> None:
        session = self._registry.get(req.bot)
        if session is None:
            req.fail(SessionNotFoundError(f"No session for bot {req.bot.fingerprint}"))
            return
        if req.call is None:
            req.fail(ValueError("SendHttpCall carries no call"))
            return

        request = build_request(req.call, session.token, self._http_base_url, self._user_agent)
        self._spawn(self._perform_http(req, request), f"http-{req.call.method}-{req.call.path}")

    async def _perform_http(self, req: SendHttpCall, request: HttpRequest) -> None:
        try:
            response = await self._http.request(request)
        except TransportError as e:
            req.fail(e)
            return
        except Exception as e:
            log.exception("runner.http_failed", method=request.method, path=req.call.path)
            req.fail(e)
            return
        log.info("runner.http_done", method=request.method, path=req.call.path, status=response.status)
        if req.reply is None:
            log.debug("runner.http_unclaimed", source=req.source)
        req.resolve(response)

    # ── Transport events ──────────────────────────────────────────────────────

    async def _on_channel_opened(self, ev: ChannelOpened) -> None:
        session = self._registry.get_by_channel(ev.channel_id)
        if session is None:
            log.info("runner.orphan_channel", channel_id=ev.channel_id, item="opened")
            self._spawn(self._close_channel(ev.channel_id), f"close-{ev.channel_id}")
            return
        self._bind(session)
        self._live_channels.add(ev.channel_id)
        await self._apply(session, self._machine.on_transport_open(session))

    async def _on_frame(self, ev: FrameReceived) -> None:
        session = self._registry.get_by_channel(ev.channel_id)
        if session is None:
            log.info("runner.orphan_channel", channel_id=ev.channel_id, item="frame")
            self._spawn(self._close_channel(ev.channel_id), f"close-{ev.channel_id}")
            return
        self._bind(session)

        try:
            event = parse_frame(ev.payload, session)
        except DecodeError as e:
            log.warning("runner.decode_failed", error=str(e), error_type=type(e).__name__)
            return

        was_ready = session.phase is SessionPhase.READY
        effects = self._machine.on_event(session, event)
        await self._apply(session, effects)
        if not was_ready and session.phase is SessionPhase.READY:
            self._persist()

    async def _on_channel_closed(self, ev: ChannelClosed) -> None:
        self._live_channels.discard(ev.channel_id)
        owed = self._stale_closes.get(ev.channel_id, 0)
        if owed:
            if owed == 1:
                del self._stale_closes[ev.channel_id]
            else:
                self._stale_closes[ev.channel_id] = owed - 1
            log.debug("runner.stale_close", channel_id=ev.channel_id, reason=ev.reason)
            return

        session = self._registry.get_by_channel(ev.channel_id)
        if session is None:
            log.debug("runner.unknown_channel", channel_id=ev.channel_id, item="closed")
            return
        self._bind(session)
        log.info("runner.channel_closed", reason=ev.reason)
        await self._apply(session, self._machine.on_transport_closed(session))

        if not self._reconnect.enabled:
            return
        if session.reconnect_attempts >= self._reconnect.max_attempts:
            log.error("runner.reconnect_exhausted", attempts=session.reconnect_attempts)
            return
        session.reconnect_attempts += 1
        context = ReconnectContext(bot=BotRef.of(session.identity), attempt=session.reconnect_attempts)
        self._timer.set_timer(self._reconnect.delay_ms, context.model_dump_json().encode("utf-8"))
        log.info("runner.reconnect_scheduled", attempt=session.reconnect_attempts, delay_ms=self._reconnect.delay_ms)

    # ── Timers ────────────────────────────────────────────────────────────────

    async def _on_timer(self, ev: TimerFired) -> None:
        try:
            context = parse_timer_context(ev.context)
        except ValidationError as e:
            log.warning("runner.bad_timer_context", errors=e.error_count())
            return

        if isinstance(context, HeartbeatContext):
            session = self._registry.get(context.bot.identity())
            if session is not None:
                self._bind(session)
            await self._heartbeat.on_wake(self._registry, context)
            return

        session = self._registry.get(context.bot.identity())
        if session is None:
            return
        self._bind(session)
        if session.phase is not SessionPhase.DISCONNECTED or context.attempt != session.reconnect_attempts:
            log.debug("runner.reconnect_skipped", phase=session.phase.value, attempt=context.attempt)
            return
        log.info("runner.reconnect", attempt=context.attempt)
        self._open_channel(session)

    # ─────────────────────────────────────────────────────────────────────────
    # Effects and helpers
    # ─────────────────────────────────────────────────────────────────────────

    async def _apply(self, session: Session, effects: list[Effect]) -> None:
        for effect in effects:
            if isinstance(effect, SendFrame):
                try:
                    await self._transport.send(session.channel_id, effect.payload)
                except TransportError as e:
                    log.warning("runner.send_failed", error=str(e))
            elif isinstance(effect, ScheduleHeartbeat):
                self._heartbeat.schedule(session, effect.delay_ms)
            elif isinstance(effect, ForwardEvent):
                self._forward(session, effect)
            elif isinstance(effect, CloseChannel):
                self._spawn(self._close_channel(session.channel_id), f"close-{session.channel_id}")

    def _forward(self, session: Session, effect: ForwardEvent) -> None:
        try:
            self._messenger.send(session.owner, effect.event.to_json().encode("utf-8"))
        except DeliveryError as e:
            log.warning("runner.forward_failed", owner=session.owner, error=str(e))
            return
        log.debug("runner.forwarded", kind=effect.event.kind.value, owner=session.owner)

    def _open_channel(self, session: Session) -> None:
        """
        Move the session to Connecting and open its channel in the background.

        A socket still attached to the channel is closed first; the ChannelClosed
        it produces is recorded as owed and skipped when it arrives, so it cannot
        tear down the session being reopened.
        """
        channel_id = session.channel_id
        replace = channel_id in self._live_channels
        if replace:
            self._live_channels.discard(channel_id)
            self._stale_closes[channel_id] = self._stale_closes.get(channel_id, 0) + 1
            log.info("runner.replace_socket", channel_id=channel_id)
        session.phase = SessionPhase.CONNECTING
        self._spawn(self._open(channel_id, replace), f"open-{channel_id}")

    async def _open(self, channel_id: int, replace: bool = False) -> None:
        try:
            if replace:
                await self._transport.close(channel_id)
            await self._transport.open(channel_id, self._gateway_url)
        except TransportError as e:
            log.warning("runner.open_failed", channel_id=channel_id, error=str(e))
            self._inbox.put_nowait(ChannelClosed(channel_id=channel_id, reason=f"open failed: {e}"))

    async def _close_channel(self, channel_id: int) -> None:
        try:
            await self._transport.close(channel_id)
        except TransportError as e:
            log.warning("runner.close_failed", channel_id=channel_id, error=str(e))

    def _persist(self) -> None:
        try:
            self._store.save(self._registry.dump())
        except OSError as e:
            log.error("runner.persist_failed", error=str(e))

    def _spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_background(self) -> None:
        """Wait for in-flight opens, closes and HTTP calls to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @staticmethod
    def _bind(session: Session) -> None:
        bind_bot(session.channel_id, session.identity.fingerprint)
