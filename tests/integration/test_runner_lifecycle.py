"""
tests/integration/test_runner_lifecycle.py — GatewayRunner over a real WebSocketTransport

The loopback gateway greets each connection with HELLO. The first Identify it
sees is answered with a non-resumable INVALID_SESSION, every later one with
READY.
"""

from __future__ import annotations

import asyncio
import json

import pytest
import pytest_asyncio
import websockets

from discord_runner.gateway.events import EventKind
from discord_runner.runner.client import RunnerClient
from discord_runner.runner.messages import Connect, Disconnect
from discord_runner.runner.runner import GatewayRunner
from discord_runner.runner.session import SessionPhase
from discord_runner.runner.transport import WebSocketTransport

HELLO = json.dumps({"op": 10, "d": {"heartbeat_interval": 41250}, "s": None, "t": None})
INVALID = json.dumps({"op": 9, "d": False, "s": None, "t": None})
READY = json.dumps({
    "op": 0,
    "s": 1,
    "t": "READY",
    "d": {"v": 9, "user": {"id": "1", "username": "runner-bot"}, "session_id": "sess-2", "guilds": []},
})


class _Gateway:
    def __init__(self):
        self.connections = 0
        self.identifies = 0

    async def handler(self, ws):
        self.connections += 1
        await ws.send(HELLO)
        async for message in ws:
            if json.loads(message).get("op") != 2:
                continue
            self.identifies += 1
            await ws.send(INVALID if self.identifies == 1 else READY)


@pytest_asyncio.fixture
async def gateway():
    gw = _Gateway()
    async with websockets.serve(gw.handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        gw.url = f"ws://127.0.0.1:{port}"
        yield gw


async def _until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def _runner(gateway, timer, store, messenger, fake_http):
    inbox: asyncio.Queue = asyncio.Queue()
    transport = WebSocketTransport(inbox, open_timeout=2.0)
    runner = GatewayRunner(
        inbox, transport, timer, store, messenger, fake_http, gateway_url=gateway.url,
    )
    return runner, transport


class TestRunnerLifecycle:
    @pytest.mark.asyncio
    async def test_disconnect_during_open_leaves_no_socket(
        self, gateway, timer, store, messenger, fake_http, identity
    ):
        runner, transport = _runner(gateway, timer, store, messenger, fake_http)
        await runner.start()

        await runner.handle(Connect(bot=identity, source="bot-a"))
        await runner.handle(Disconnect(bot=identity, source="bot-a"))
        await runner.wait_background()

        # orphaned ChannelOpened / HELLO frame make the runner close the socket
        for _ in range(3):
            await runner.drain()
            await runner.wait_background()

        assert runner.registry.count == 0
        assert not transport.is_open(0)
        await transport.close_all()

    @pytest.mark.asyncio
    async def test_reconnect_after_non_resumable_invalid_session(
        self, gateway, timer, store, messenger, fake_http, identity
    ):
        runner, transport = _runner(gateway, timer, store, messenger, fake_http)
        task = asyncio.create_task(runner.run())
        client = RunnerClient(runner, messenger, "bot-a", timeout=2.0)
        try:
            cid = await client.connect(identity)
            await _until(
                lambda: gateway.identifies == 1
                and runner.registry.get(identity).phase is SessionPhase.DISCONNECTED
            )

            assert await client.connect(identity) == cid
            event = await client.next_event(timeout=2.0)

            assert event.kind is EventKind.READY
            assert event.data.session_id == "sess-2"
            assert runner.registry.get(identity).phase is SessionPhase.READY
            assert gateway.connections == 2
            assert transport.is_open(cid)
        finally:
            await runner.stop()
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            await transport.close_all()
