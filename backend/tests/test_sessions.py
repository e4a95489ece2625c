from __future__ import annotations

import pytest
from fastapi.websockets import WebSocketState

from app.monitoring.metrics import realtime_sessions
from poker.realtime.errors import CapacityExceeded, TooManySessions
from poker.realtime.sessions import SessionRegistry


class DummyWebSocket:
    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED


def test_attach_bind_and_lookup() -> None:
    registry = SessionRegistry(max_sessions=10)
    websocket = DummyWebSocket()

    session = registry.attach("c1", websocket)
    assert not session.joined
    assert "c1" in registry and len(registry) == 1
    assert realtime_sessions.value() == 1

    bound = registry.bind("c1", "U1", "R")
    assert bound.joined
    assert bound.websocket is websocket
    assert [entry.connection_id for entry in registry.sessions_for("R")] == ["c1"]
    assert registry.connections_for_user("U1") == ["c1"]
    assert registry.bindings() == [("c1", "U1", "R")]


def test_attach_twice_is_rejected() -> None:
    registry = SessionRegistry(max_sessions=10)
    registry.attach("c1", DummyWebSocket())

    with pytest.raises(ValueError):
        registry.attach("c1", DummyWebSocket())


def test_session_limit() -> None:
    registry = SessionRegistry(max_sessions=1)
    registry.attach("c1", DummyWebSocket())

    with pytest.raises(TooManySessions) as excinfo:
        registry.attach("c2", DummyWebSocket())

    assert isinstance(excinfo.value, CapacityExceeded)
    assert excinfo.value.limit == "sessions"
    assert "c2" not in registry


def test_rebinding_moves_indexes() -> None:
    registry = SessionRegistry(max_sessions=10)
    registry.attach("c1", DummyWebSocket())
    registry.bind("c1", "U1", "R")

    registry.bind("c1", "U2", "S")

    assert registry.sessions_for("R") == []
    assert registry.connections_for_user("U1") == []
    assert registry.connections_for_user("U2") == ["c1"]


def test_unbind_keeps_connection_attached() -> None:
    registry = SessionRegistry(max_sessions=10)
    registry.attach("c1", DummyWebSocket())
    registry.bind("c1", "U1", "R")

    assert registry.unbind("c1") == "U1"

    assert "c1" in registry
    assert not registry.get("c1").joined
    assert registry.bindings() == []
    assert registry.unbind("missing") is None


def test_detach_removes_every_direction() -> None:
    registry = SessionRegistry(max_sessions=10)
    registry.attach("c1", DummyWebSocket())
    registry.attach("c2", DummyWebSocket())
    registry.bind("c1", "U1", "R")
    registry.bind("c2", "U1", "R")

    assert registry.detach("c1") == "U1"

    assert "c1" not in registry
    assert registry.connections_for_user("U1") == ["c2"]
    assert [entry.connection_id for entry in registry.sessions_for("R")] == ["c2"]
    assert registry.detach("c1") is None
    assert registry.bind("c1", "U1", "R") is None


def test_returned_sessions_are_copies() -> None:
    registry = SessionRegistry(max_sessions=10)
    registry.attach("c1", DummyWebSocket())

    copy = registry.get("c1")
    copy.user_id = "U9"

    assert not registry.get("c1").joined
    assert registry.get("missing") is None
