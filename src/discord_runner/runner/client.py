"""
runner/client.py — In-process Runner Client

What a bot holds to talk to a GatewayRunner living in the same event loop.

Usage:
    client = RunnerClient(runner, messenger, address="link-rewriter")
    await client.connect(identity)
    async for event in client.events():
        ...
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any, Optional

from discord_runner.exceptions import DecodeError, DeliveryError
from discord_runner.gateway.commands import GatewayCommand
from discord_runner.gateway.http_api import HttpCall, HttpResponse
from discord_runner.gateway.protocol import GatewayReceiveEvent, parse_forwarded_event
from discord_runner.observability.logger import get_logger
from discord_runner.runner.capabilities import LocalMessenger
from discord_runner.runner.messages import (
    Connect,
    ControlRequest,
    Disconnect,
    SendGatewayEvent,
    SendHttpCall,
)
from discord_runner.runner.session import BotIdentity

log = get_logger(__name__)


class RunnerClient:
    """
    Request/response wrapper over the runner inbox plus the caller's mailbox.

    Every request waits at most `timeout` seconds for the runner's reply;
    a reply that never comes raises DeliveryError.
    """

    def __init__(self, runner, messenger: LocalMessenger, address: str, timeout: float = 10.0):
        self._runner = runner
        self._messenger = messenger
        self._address = address
        self._timeout = timeout
        self._mailbox: asyncio.Queue = messenger.register(address)

    @property
    def address(self) -> str:
        return self._address

    # ─────────────────────────────────────────────────────────────────────────
    # Requests
    # ─────────────────────────────────────────────────────────────────────────

    async def _request(self, req: ControlRequest, timeout: Optional[float]) -> Any:
        req.reply = asyncio.get_running_loop().create_future()
        self._runner.submit(req)
        try:
            return await asyncio.wait_for(req.reply, timeout=timeout or self._timeout)
        except asyncio.TimeoutError as e:
            raise DeliveryError(
                f"No reply to {type(req).__name__} within {timeout or self._timeout}s"
            ) from e

    async def connect(self, bot: BotIdentity, timeout: Optional[float] = None) -> int:
        """Register the bot's session. Returns once the socket open is issued."""
        return await self._request(Connect(bot=bot, source=self._address), timeout)

    async def disconnect(self, bot: BotIdentity, timeout: Optional[float] = None) -> bool:
        return await self._request(Disconnect(bot=bot, source=self._address), timeout)

    async def http(self, bot: BotIdentity, call: HttpCall, timeout: Optional[float] = None) -> HttpResponse:
        return await self._request(SendHttpCall(bot=bot, source=self._address, call=call), timeout)

    async def send_gateway_event(
        self, bot: BotIdentity, command: GatewayCommand, timeout: Optional[float] = None
    ) -> bool:
        return await self._request(SendGatewayEvent(bot=bot, source=self._address, command=command), timeout)

    # ─────────────────────────────────────────────────────────────────────────
    # Forwarded events
    # ─────────────────────────────────────────────────────────────────────────

    async def next_event(self, timeout: Optional[float] = None) -> GatewayReceiveEvent:
        """Wait for the next forwarded event that decodes cleanly."""
        while True:
            body = await asyncio.wait_for(self._mailbox.get(), timeout=timeout)
            try:
                return parse_forwarded_event(body)
            except DecodeError as e:
                log.warning("client.bad_event", address=self._address, error=str(e))

    async def events(self) -> AsyncIterator[GatewayReceiveEvent]:
        while True:
            yield await self.next_event()

    def close(self) -> None:
        self._messenger.unregister(self._address)
