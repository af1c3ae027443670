"""
tests/unit/test_state_machine.py — Session state machine transitions

Each test puts a Session in a phase, feeds one event, and checks the phase,
the stored fields and the returned effects.
"""

from __future__ import annotations

import pytest

from discord_runner.gateway.commands import Heartbeat, Identify, Resume
from discord_runner.gateway.events import EventKind, Hello, Ready, User, EventData
from discord_runner.gateway.protocol import GatewayReceiveEvent
from discord_runner.runner.session import Session, SessionPhase
from discord_runner.runner.state_machine import (
    CloseChannel,
    ForwardEvent,
    ScheduleHeartbeat,
    SendFrame,
    SessionMachine,
)


def _session(phase=SessionPhase.CONNECTING, **kw) -> Session:
    s = Session(owner="bot-a", token="tok-A", intents=513, channel_id=0, **kw)
    s.phase = phase
    return s


def _hello(interval=41250):
    return GatewayReceiveEvent(EventKind.HELLO, Hello(heartbeat_interval=interval))


def _ready(session_id="sess-1"):
    return GatewayReceiveEvent(
        EventKind.READY,
        Ready(v=9, user=User(id="1", username="bot"), session_id=session_id,
              resume_gateway_url="wss://resume.example"),
    )


def _event(kind, data=None):
    return GatewayReceiveEvent(kind, data)


@pytest.fixture
def machine():
    return SessionMachine()


class TestTransportOpen:
    def test_connecting_to_awaiting_hello(self, machine):
        s = _session()
        assert machine.on_transport_open(s) == []
        assert s.phase is SessionPhase.AWAITING_HELLO
        assert s.generation == 1

    def test_each_open_bumps_generation(self, machine):
        s = _session()
        machine.on_transport_open(s)
        machine.on_transport_closed(s)
        s.phase = SessionPhase.CONNECTING
        machine.on_transport_open(s)
        assert s.generation == 2

    def test_open_outside_connecting_ignored(self, machine):
        s = _session(SessionPhase.READY)
        assert machine.on_transport_open(s) == []
        assert s.phase is SessionPhase.READY
        assert s.generation == 0


class TestHello:
    def test_hello_effects_in_order(self, machine):
        s = _session(SessionPhase.AWAITING_HELLO)
        effects = machine.on_event(s, _hello(41250))

        assert s.phase is SessionPhase.IDENTIFYING
        assert s.heartbeat_interval == 41250
        assert len(effects) == 3
        assert effects[0] == ScheduleHeartbeat(40250)
        assert isinstance(effects[1], SendFrame)
        assert effects[1].command == Heartbeat(seq=None)
        assert isinstance(effects[2].command, Identify)
        assert effects[2].command.token == "tok-A"
        assert effects[2].command.intents == 513

    def test_lead_is_configurable(self):
        s = _session(SessionPhase.AWAITING_HELLO)
        effects = SessionMachine(lead_ms=250).on_event(s, _hello(1000))
        assert effects[0] == ScheduleHeartbeat(750)

    def test_tiny_interval_never_negative(self, machine):
        s = _session(SessionPhase.AWAITING_HELLO)
        assert machine.on_event(s, _hello(10))[0] == ScheduleHeartbeat(0)

    def test_hello_outside_awaiting_hello_ignored(self, machine):
        s = _session(SessionPhase.READY, heartbeat_interval=5)
        assert machine.on_event(s, _hello()) == []
        assert s.heartbeat_interval == 5


class TestReady:
    def test_identifying_to_ready(self, machine):
        s = _session(SessionPhase.IDENTIFYING)
        event = _ready("sess-1")
        effects = machine.on_event(s, event)
        assert s.phase is SessionPhase.READY
        assert s.session_id == "sess-1"
        assert s.resume_gateway_url == "wss://resume.example"
        assert effects == [ForwardEvent(event)]

    def test_ready_resets_reconnect_attempts(self, machine):
        s = _session(SessionPhase.IDENTIFYING, reconnect_attempts=3)
        machine.on_event(s, _ready())
        assert s.reconnect_attempts == 0

    def test_ready_before_hello_ignored(self, machine):
        s = _session(SessionPhase.AWAITING_HELLO)
        assert machine.on_event(s, _ready()) == []
        assert s.session_id == ""

    def test_resumed_goes_ready_and_forwards(self, machine):
        s = _session(SessionPhase.IDENTIFYING, session_id="sess-1")
        event = _event(EventKind.RESUMED)
        assert machine.on_event(s, event) == [ForwardEvent(event)]
        assert s.phase is SessionPhase.READY


class TestReconnectAndInvalidSession:
    def test_reconnect_sends_resume(self, machine):
        s = _session(SessionPhase.READY, session_id="sess-1", sequence=42)
        effects = machine.on_event(s, _event(EventKind.RECONNECT))
        assert effects == [SendFrame(Resume(token="tok-A", session_id="sess-1", seq=42))]
        assert s.phase is SessionPhase.READY

    def test_invalid_session_resumable(self, machine):
        s = _session(SessionPhase.READY, session_id="sess-1", sequence=9)
        effects = machine.on_event(s, _event(EventKind.INVALID_SESSION, True))
        assert s.phase is SessionPhase.IDENTIFYING
        assert effects == [SendFrame(Resume(token="tok-A", session_id="sess-1", seq=9))]

    def test_invalid_session_not_resumable_closes_channel(self, machine):
        s = _session(SessionPhase.READY, session_id="sess-1", heartbeat_interval=41250, sequence=9)
        effects = machine.on_event(s, _event(EventKind.INVALID_SESSION, False))
        assert s.phase is SessionPhase.DISCONNECTED
        assert effects == [CloseChannel()]

    @pytest.mark.parametrize("phase", [SessionPhase.AWAITING_HELLO, SessionPhase.IDENTIFYING, SessionPhase.READY])
    def test_invalid_session_not_resumable_clears_connection(self, machine, phase):
        s = _session(phase, session_id="sess-1", heartbeat_interval=41250, sequence=9,
                     resume_gateway_url="wss://resume.example")
        machine.on_event(s, _event(EventKind.INVALID_SESSION, False))
        assert (s.heartbeat_interval, s.sequence, s.session_id, s.resume_gateway_url) == (0, 0, "", "")

    def test_reconnect_while_disconnected_ignored(self, machine):
        s = _session(SessionPhase.DISCONNECTED)
        assert machine.on_event(s, _event(EventKind.RECONNECT)) == []


class TestSteadyState:
    def test_dispatch_forwarded_when_ready(self, machine):
        s = _session(SessionPhase.READY)
        event = _event(EventKind.TYPING_START, EventData())
        assert machine.on_event(s, event) == [ForwardEvent(event)]
        assert s.phase is SessionPhase.READY

    def test_dispatch_before_ready_dropped(self, machine):
        s = _session(SessionPhase.IDENTIFYING)
        assert machine.on_event(s, _event(EventKind.MESSAGE_CREATE, EventData())) == []

    def test_heartbeat_ack_marks_acked(self, machine):
        s = _session(SessionPhase.READY)
        s.heartbeat_acked = False
        assert machine.on_event(s, _event(EventKind.HEARTBEAT_ACK)) == []
        assert s.heartbeat_acked is True
        assert s.phase is SessionPhase.READY

    def test_heartbeat_request_answered(self, machine):
        s = _session(SessionPhase.READY, sequence=12)
        assert machine.on_event(s, _event(EventKind.HEARTBEAT)) == [SendFrame(Heartbeat(seq=12))]


class TestTransportClosed:
    @pytest.mark.parametrize("phase", list(SessionPhase))
    def test_any_phase_to_disconnected(self, machine, phase):
        s = _session(phase, heartbeat_interval=41250, sequence=7, session_id="sess-1")
        assert machine.on_transport_closed(s) == []
        assert s.phase is SessionPhase.DISCONNECTED
        assert (s.heartbeat_interval, s.sequence, s.session_id) == (0, 0, "")
