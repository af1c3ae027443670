"""
exceptions.py — discord-runner Unified Error Hierarchy

All runner-specific exceptions live here. Every layer of the stack
raises typed subclasses of RunnerError — never bare Exception.

Import from here, not from individual modules:
    from discord_runner.exceptions import UnknownEventTypeError, TransportError

Hierarchy:
    RunnerError
    ├── DecodeError
    │   ├── MalformedPayloadError
    │   ├── UnknownEventTypeError
    │   └── PayloadShapeMismatchError
    ├── RegistryError
    │   ├── SessionNotFoundError
    │   └── SessionExistsError
    ├── SessionNotReadyError
    ├── TransportError
    ├── DeliveryError
    └── StateLoadError
"""

from __future__ import annotations


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class RunnerError(Exception):
    """Base class for all discord-runner exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Payload codec
# ─────────────────────────────────────────────────────────────────────────────

class DecodeError(RunnerError):
    """Base for inbound frame decoding errors. Always recovered locally."""


class MalformedPayloadError(DecodeError):
    """Frame is not JSON, or lacks the op/d envelope fields."""


class UnknownEventTypeError(DecodeError):
    """Dispatch frame names an event type outside the recognised set."""

    def __init__(self, name: str, message: str = "") -> None:
        self.name = name
        super().__init__(message or f"Unknown event type: '{name}'")


class PayloadShapeMismatchError(DecodeError):
    """Event data does not match the typed shape of its event kind."""

    def __init__(self, kind: str, message: str = "") -> None:
        self.kind = kind
        super().__init__(message or f"Failed to parse {kind} event data")


# ─────────────────────────────────────────────────────────────────────────────
# Session registry
# ─────────────────────────────────────────────────────────────────────────────

class RegistryError(RunnerError):
    """Base for session registry errors."""


class SessionNotFoundError(RegistryError):
    """No session is registered for the given bot identity or channel."""


class SessionExistsError(RegistryError):
    """A session is already registered for this bot identity."""


class SessionNotReadyError(RunnerError):
    """Operation needs a session that has completed the handshake."""


# ─────────────────────────────────────────────────────────────────────────────
# Capabilities
# ─────────────────────────────────────────────────────────────────────────────

class TransportError(RunnerError):
    """Opening, sending on, or closing a transport channel failed."""

    def __init__(self, channel_id: int | None, message: str) -> None:
        self.channel_id = channel_id
        super().__init__(message)


class DeliveryError(RunnerError):
    """A message could not be delivered to a caller (or a reply never came)."""


class StateLoadError(RunnerError):
    """Persisted registry state exists but cannot be decoded. Aborts startup."""


__all__ = [
    "RunnerError",
    # Codec
    "DecodeError",
    "MalformedPayloadError",
    "UnknownEventTypeError",
    "PayloadShapeMismatchError",
    # Registry
    "RegistryError",
    "SessionNotFoundError",
    "SessionExistsError",
    "SessionNotReadyError",
    # Capabilities
    "TransportError",
    "DeliveryError",
    "StateLoadError",
]
