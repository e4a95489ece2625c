"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import contextlib
import itertools
import sys
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest
from fastapi.testclient import TestClient

ROOT_DIR = Path(__file__).resolve().parents[1]
for path in (ROOT_DIR, ROOT_DIR / "src"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from app.config import Settings
from app.main import create_app
from poker.realtime.managers import RealtimeServices, build_realtime


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "max_rooms": 10,
        "max_users": 50,
        "max_users_per_room": 5,
        "max_sessions": 100,
        "disconnect_grace_period_seconds": 300,
        "maintenance_interval_seconds": 0,
        "broadcast_send_timeout_seconds": 1,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def services(settings, clock) -> RealtimeServices:
    """Realtime components with a fake clock and ids ``U1``, ``U2`` and so on."""

    counter = itertools.count(1)
    return build_realtime(settings, clock=clock, id_factory=lambda: f"U{next(counter)}")


@pytest.fixture()
def make_services(clock):
    """Factory for realtime components with overridden settings."""

    def factory(**overrides: Any) -> RealtimeServices:
        return build_realtime(make_settings(**overrides), clock=clock)

    return factory


@pytest.fixture()
def store(services):
    return services.store


@pytest.fixture()
def make_client() -> Iterator[Callable[..., TestClient]]:
    """Yield a factory of TestClients, each around an application with fresh realtime state."""

    with contextlib.ExitStack() as stack:
        yield lambda **overrides: stack.enter_context(TestClient(create_app(make_settings(**overrides))))


@pytest.fixture()
def client(make_client) -> TestClient:
    return make_client(max_users_per_room=2)
