"""
Test conftest — isolate Discord secrets from the environment and provide the
fake capabilities the runner tests drive the control loop with.
"""
import asyncio
import json

import pytest

_SECRET_ENV_VARS = [
    "DISCORD_BOT_TOKEN",
    "DISCORD_INTENTS",
    "DISCORD_RUNNER_CONFIG",
]


@pytest.fixture(autouse=True)
def _clear_secrets_from_env(monkeypatch):
    """Remove Discord env vars for every test so Settings() behaves as if none
    are present unless the test explicitly provides them. Also disables .env
    file loading so a local developer .env does not leak a real token."""
    for var in _SECRET_ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    import discord_runner.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
    monkeypatch.setattr(settings_module, "_singleton", None)


# ── Fake capabilities ─────────────────────────────────────────────────────────

class FakeTransport:
    """Records every call. Opens succeed (without posting anything) unless
    `fail_open` is set or the channel is still open; sends fail when
    `fail_send` is set."""

    def __init__(self):
        self.opened: list[tuple[int, str]] = []
        self.open_channels: set[int] = set()
        self.sent: list[tuple[int, bytes]] = []
        self.closed: list[int] = []
        self.fail_open = False
        self.fail_send = False

    async def open(self, channel_id, url):
        from discord_runner.exceptions import TransportError
        self.opened.append((channel_id, url))
        if self.fail_open:
            raise TransportError(channel_id, "refused")
        if channel_id in self.open_channels:
            raise TransportError(channel_id, f"Channel {channel_id} is already open")
        self.open_channels.add(channel_id)

    async def send(self, channel_id, payload, text=True):
        from discord_runner.exceptions import TransportError
        if self.fail_send:
            raise TransportError(channel_id, "broken pipe")
        self.sent.append((channel_id, payload))

    async def close(self, channel_id):
        self.closed.append(channel_id)
        self.open_channels.discard(channel_id)

    def frames(self, channel_id=None):
        """Decoded JSON of every sent frame, optionally for one channel."""
        return [json.loads(p) for c, p in self.sent if channel_id is None or c == channel_id]


class FakeTimer:
    def __init__(self):
        self.calls: list[tuple[int, bytes]] = []

    def set_timer(self, delay_ms, context):
        self.calls.append((delay_ms, context))

    @property
    def delays(self):
        return [d for d, _ in self.calls]

    def contexts(self):
        return [json.loads(c) for _, c in self.calls]


class FakeHttp:
    def __init__(self, status=200, body=b"{}"):
        self.requests = []
        self.status = status
        self.body = body
        self.error = None

    async def request(self, request):
        from discord_runner.gateway.http_api import HttpResponse
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return HttpResponse(status=self.status, body=self.body)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
def fake_http():
    return FakeHttp()


@pytest.fixture
def store():
    from discord_runner.runner.capabilities import MemoryStateStore
    return MemoryStateStore()


@pytest.fixture
def messenger():
    from discord_runner.runner.capabilities import LocalMessenger
    return LocalMessenger()


@pytest.fixture
def identity():
    from discord_runner.runner.session import BotIdentity
    return BotIdentity(token="tok-A", intents=33280)


@pytest.fixture
def make_runner(transport, timer, store, messenger, fake_http):
    """Factory: build a GatewayRunner over the fake capabilities."""
    from discord_runner.runner.runner import GatewayRunner

    def _make(**kwargs):
        return GatewayRunner(asyncio.Queue(), transport, timer, store, messenger, fake_http, **kwargs)

    return _make
