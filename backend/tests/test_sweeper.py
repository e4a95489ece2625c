from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest
from fastapi.websockets import WebSocketState

from app.monitoring.metrics import realtime_rooms, realtime_sweeper_evictions_total, realtime_users
from poker.realtime.models import Room, User
from poker.realtime.sweeper import SESSION_EXPIRED_CLOSE_CODE, SESSION_EXPIRED_MESSAGE, MaintenanceSweeper


class DummyWebSocket:
    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []
        self.closed: tuple[int, str | None] | None = None

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.application_state = WebSocketState.DISCONNECTED
        self.closed = (code, reason)


@pytest.fixture(autouse=True)
def reset_sweeper_metrics():
    realtime_sweeper_evictions_total.clear()
    yield
    realtime_sweeper_evictions_total.clear()


def _corrupt(store) -> None:
    """Introduce one inconsistency of every kind the sweeper heals."""

    store._rooms["empty"] = Room(id="empty")
    store._users["ghost"] = User(id="ghost", display_name="Ghost", room_id="gone")
    stray = User(id="stray", display_name="Stray", room_id="R")
    store._rooms["R"].members.append(stray)


def test_sweep_evicts_expired_users_and_their_empty_rooms(services, clock) -> None:
    store, reconnection = services.store, services.reconnection
    alice = store.join_room("Alice", "R")
    bob = store.join_room("Bob", "S")
    reconnection.leave(alice.id)
    clock.advance(100)
    reconnection.leave(bob.id)

    clock.advance(250)
    report = services.sweeper.run()

    assert [user.id for user in report.expired_users] == [alice.id]
    assert report.affected_rooms == {"R"}
    assert store.room_ids() == ["S"]
    assert store.get_user(bob.id) is not None
    assert realtime_sweeper_evictions_total.value("expired") == 1


def test_disconnected_sole_member_keeps_room_during_grace(services, clock) -> None:
    alice = services.store.join_room("Alice", "R")
    services.reconnection.leave(alice.id)

    report = services.sweeper.run()

    assert not report.changed
    assert services.store.room_ids() == ["R"]


def test_sweep_heals_inconsistencies_and_is_idempotent(services) -> None:
    store = services.store
    store.join_room("Alice", "R")
    _corrupt(store)

    report = services.sweeper.run()

    assert report.removed_rooms == ["empty"]
    assert {user.id for user in report.orphaned_users} == {"ghost", "stray"}
    assert store.user_ids() == store.member_ids()
    assert sorted(store.room_ids()) == ["R"]

    second = services.sweeper.run()
    assert not second.changed
    assert store.user_ids() == store.member_ids()


def test_sweep_unbinds_sessions_of_missing_users(services, caplog) -> None:
    store, sessions = services.store, services.sessions
    alice = store.join_room("Alice", "R")
    sessions.attach("c1", object())
    sessions.attach("c2", object())
    sessions.bind("c1", alice.id, "R")
    sessions.bind("c2", "gone-user", "R")

    with caplog.at_level(logging.WARNING, logger="poker.realtime"):
        report = services.sweeper.run()

    assert report.stale_sessions == ["c2"]
    assert sessions.bindings() == [("c1", alice.id, "R")]
    assert "c2" in sessions
    assert any("missing user gone-user" in record.getMessage() for record in caplog.records)


def test_sweep_updates_gauges_and_warns_on_high_usage(services, settings, caplog) -> None:
    store = services.store
    sweeper = MaintenanceSweeper(
        store, services.sessions, services.reconnection, interval_seconds=0, warning_ratio=0.1
    )
    for index in range(2):
        store.join_room(f"Player {index}", f"room-{index}")
    services.reconnection.leave(store.find_members("room-0")[0].id)

    with caplog.at_level(logging.INFO, logger="poker.realtime"):
        sweeper.run(periodic=True)

    assert realtime_rooms.value() == 2
    assert realtime_users.value("connected") == 1
    assert realtime_users.value("disconnected") == 1
    messages = [record.getMessage() for record in caplog.records]
    assert any(message.startswith("Realtime usage: 2/10 rooms, 2/50 users") for message in messages)
    assert any("High room usage: 2/10" in message for message in messages)
    assert not any("High user usage" in message for message in messages)


@pytest.mark.anyio("asyncio")
async def test_periodic_sweep_runs_in_background(services, clock) -> None:
    sweeper = MaintenanceSweeper(
        services.store, services.sessions, services.reconnection, interval_seconds=0.01
    )
    alice = services.store.join_room("Alice", "R")
    services.reconnection.leave(alice.id)
    clock.advance(301)

    await sweeper.start()
    assert sweeper.running
    for _ in range(100):
        if services.store.user_count == 0:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()

    assert services.store.user_count == 0
    assert not sweeper.running


@pytest.mark.anyio("asyncio")
async def test_disabled_periodic_sweep_does_not_start(services) -> None:
    await services.sweeper.start()

    assert not services.sweeper.running
    await services.sweeper.stop()


@pytest.mark.anyio("asyncio")
async def test_periodic_sweep_notifies_unbound_connections_and_affected_rooms(services) -> None:
    store, sessions = services.store, services.sessions
    alice = store.join_room("Alice", "R")
    bob = store.join_room("Bob", "R")
    alice_ws, bob_ws = DummyWebSocket(), DummyWebSocket()
    sessions.attach("a", alice_ws)
    sessions.bind("a", alice.id, "R")
    sessions.attach("b", bob_ws)
    sessions.bind("b", bob.id, "R")
    # Alice drops out of the index while her connection is still bound.
    del store._users[alice.id]
    sweeper = MaintenanceSweeper(
        store,
        sessions,
        services.reconnection,
        interval_seconds=0.01,
        broadcaster=services.broadcaster,
    )

    await sweeper.start()
    for _ in range(100):
        if bob_ws.sent:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()

    assert alice_ws.sent == [{"type": "ERROR", "payload": {"message": SESSION_EXPIRED_MESSAGE}}]
    assert alice_ws.closed == (SESSION_EXPIRED_CLOSE_CODE, "Session expired")
    assert sessions.get("a").user_id is None
    assert bob_ws.sent[0]["type"] == "STATE"
    assert [member["id"] for member in bob_ws.sent[0]["payload"]["members"]] == [bob.id]


@pytest.mark.anyio("asyncio")
async def test_publish_without_broadcaster_sends_nothing(services) -> None:
    sweeper = MaintenanceSweeper(services.store, services.sessions, services.reconnection, interval_seconds=0)
    websocket = DummyWebSocket()
    services.sessions.attach("a", websocket)
    services.sessions.bind("a", "gone-user", "R")

    report = sweeper.run()
    await sweeper.publish(report, rooms=["R"])

    assert report.stale_sessions == ["a"]
    assert report.affected_rooms == {"R"}
    assert websocket.sent == []
    assert websocket.closed is None
