"""Session runner: registry, state machine, heartbeats, control loop and capabilities."""

from discord_runner.runner.client import RunnerClient
from discord_runner.runner.registry import SessionRegistry
from discord_runner.runner.runner import GatewayRunner
from discord_runner.runner.session import BotIdentity, Session, SessionPhase
from discord_runner.runner.state_machine import SessionMachine

__all__ = [
    "BotIdentity",
    "GatewayRunner",
    "RunnerClient",
    "Session",
    "SessionMachine",
    "SessionPhase",
    "SessionRegistry",
]
