"""
runner/transport.py — WebSocket Transport

Transport capability over `websockets`. Each channel id owns one client
connection and one reader task; inbound frames, the open, and the close are
all reported by putting ChannelOpened / FrameReceived / ChannelClosed on the
runner inbox. A failed open() raises TransportError and posts nothing; the
runner reports it as a closed channel.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import websockets

from discord_runner.exceptions import TransportError
from discord_runner.observability.logger import get_logger
from discord_runner.runner.messages import ChannelClosed, ChannelOpened, FrameReceived

log = get_logger(__name__)


class WebSocketTransport:
    """
    Args:
        inbox:         The runner inbox transport events are posted to.
        open_timeout:  Seconds allowed for the WebSocket handshake.
        max_size:      Largest inbound frame accepted, in bytes.
    """

    def __init__(
        self,
        inbox: asyncio.Queue,
        open_timeout: float = 10.0,
        max_size: Optional[int] = 2**22,
    ):
        self._inbox = inbox
        self._open_timeout = open_timeout
        self._max_size = max_size
        self._conns: dict[int, websockets.ClientConnection] = {}
        self._readers: dict[int, asyncio.Task] = {}

    def is_open(self, channel_id: int) -> bool:
        return channel_id in self._conns

    # ─────────────────────────────────────────────────────────────────────────
    # Connection lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def open(self, channel_id: int, url: str) -> None:
        if channel_id in self._conns:
            raise TransportError(channel_id, f"Channel {channel_id} is already open")

        try:
            ws = await websockets.connect(
                url,
                open_timeout=self._open_timeout,
                max_size=self._max_size,
            )
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
            raise TransportError(channel_id, f"Failed to open channel {channel_id}: {e}") from e

        self._conns[channel_id] = ws
        self._inbox.put_nowait(ChannelOpened(channel_id=channel_id))
        self._readers[channel_id] = asyncio.create_task(self._reader_loop(channel_id, ws))
        log.info("transport.opened", channel_id=channel_id)

    async def close(self, channel_id: int) -> None:
        ws = self._conns.get(channel_id)
        if ws is None:
            return
        await ws.close()
        reader = self._readers.get(channel_id)
        if reader is not None:
            await asyncio.gather(reader, return_exceptions=True)
        log.info("transport.closed", channel_id=channel_id)

    async def close_all(self) -> None:
        for channel_id in list(self._conns):
            await self.close(channel_id)

    # ─────────────────────────────────────────────────────────────────────────
    # Frames
    # ─────────────────────────────────────────────────────────────────────────

    async def send(self, channel_id: int, payload: bytes, text: bool = True) -> None:
        ws = self._conns.get(channel_id)
        if ws is None:
            raise TransportError(channel_id, f"Channel {channel_id} is not open")
        try:
            await ws.send(payload.decode("utf-8") if text else payload)
        except websockets.ConnectionClosed as e:
            raise TransportError(channel_id, f"Channel {channel_id} closed during send: {e}") from e

    async def _reader_loop(self, channel_id: int, ws: websockets.ClientConnection) -> None:
        """Forward every inbound frame to the inbox until the socket closes."""
        reason = "closed"
        try:
            async for raw in ws:
                if isinstance(raw, str):
                    self._inbox.put_nowait(FrameReceived(channel_id, raw.encode("utf-8"), text=True))
                else:
                    self._inbox.put_nowait(FrameReceived(channel_id, bytes(raw), text=False))
        except websockets.ConnectionClosed as e:
            reason = str(e)
            log.warning("transport.connection_lost", channel_id=channel_id, reason=reason)
        finally:
            if self._conns.get(channel_id) is ws:
                del self._conns[channel_id]
                self._readers.pop(channel_id, None)
            self._inbox.put_nowait(ChannelClosed(channel_id=channel_id, reason=reason))
