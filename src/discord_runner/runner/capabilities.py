"""
runner/capabilities.py — Runner Capabilities

The runner talks to the outside world only through these interfaces, so the
control loop can be driven by fakes in tests:

  Transport       open / send / close a WebSocket channel (runner/transport.py)
  Timer           one-shot delayed wake-up delivered to the runner inbox
  StateStore      load / save the persisted registry blob
  Messenger       deliver a message body to a caller address
  HttpTransport   perform one HTTP request (runner/http_client.py)
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from discord_runner.exceptions import DeliveryError
from discord_runner.gateway.http_api import HttpRequest, HttpResponse
from discord_runner.observability.logger import get_logger
from discord_runner.runner.messages import TimerFired

log = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Interfaces
# ─────────────────────────────────────────────────────────────────────────────

@runtime_checkable
class Transport(Protocol):
    async def open(self, channel_id: int, url: str) -> None: ...

    async def send(self, channel_id: int, payload: bytes, text: bool = True) -> None: ...

    async def close(self, channel_id: int) -> None: ...


@runtime_checkable
class Timer(Protocol):
    def set_timer(self, delay_ms: int, context: bytes) -> None: ...


@runtime_checkable
class StateStore(Protocol):
    def load(self) -> Optional[bytes]: ...

    def save(self, blob: bytes) -> None: ...


@runtime_checkable
class Messenger(Protocol):
    def send(self, target: str, body: bytes) -> None: ...


@runtime_checkable
class HttpTransport(Protocol):
    async def request(self, request: HttpRequest) -> HttpResponse: ...


# ─────────────────────────────────────────────────────────────────────────────
# Implementations
# ─────────────────────────────────────────────────────────────────────────────

class AsyncioTimer:
    """Timer backed by loop.call_later; a firing puts TimerFired on the inbox."""

    def __init__(self, inbox: asyncio.Queue):
        self._inbox = inbox
        self._handles: set[asyncio.TimerHandle] = set()

    def set_timer(self, delay_ms: int, context: bytes) -> None:
        loop = asyncio.get_running_loop()
        handle: Optional[asyncio.TimerHandle] = None

        def _fire() -> None:
            self._handles.discard(handle)
            self._inbox.put_nowait(TimerFired(context=context))

        handle = loop.call_later(max(delay_ms, 0) / 1000.0, _fire)
        self._handles.add(handle)

    @property
    def pending(self) -> int:
        return len(self._handles)

    def cancel_all(self) -> None:
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()


class FileStateStore:
    """Persist the registry blob to a single file, written atomically."""

    def __init__(self, path: str | Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[bytes]:
        if not self._path.exists():
            return None
        return self._path.read_bytes()

    def save(self, blob: bytes) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_bytes(blob)
        os.replace(tmp, self._path)


class MemoryStateStore:
    """In-process state store (tests and ephemeral runs)."""

    def __init__(self, blob: Optional[bytes] = None):
        self.blob = blob
        self.saves = 0

    def load(self) -> Optional[bytes]:
        return self.blob

    def save(self, blob: bytes) -> None:
        self.blob = blob
        self.saves += 1


class LocalMessenger:
    """
    Address → asyncio.Queue mailbox, for callers living in the same process.

    Callers register() an address and read forwarded bodies off the queue.
    """

    def __init__(self) -> None:
        self._mailboxes: dict[str, asyncio.Queue] = {}

    def register(self, address: str) -> asyncio.Queue:
        queue = self._mailboxes.get(address)
        if queue is None:
            queue = asyncio.Queue()
            self._mailboxes[address] = queue
        return queue

    def unregister(self, address: str) -> None:
        self._mailboxes.pop(address, None)

    def send(self, target: str, body: bytes) -> None:
        queue = self._mailboxes.get(target)
        if queue is None:
            raise DeliveryError(f"No mailbox registered for '{target}'")
        queue.put_nowait(body)
