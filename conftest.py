from __future__ import annotations

from collections import defaultdict
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

from chatrelay.config import Settings
from chatrelay.core.broadcast import BroadcastEngine
from chatrelay.core.dispatch import EventDispatcher
from chatrelay.core.moderation import ModerationController
from chatrelay.core.state import ChatState
from chatrelay.core.sweeper import Sweeper

T0 = 1_700_000_000_000


class RecordingTransport:
    """Collects frames per connection instead of writing to sockets."""

    def __init__(self) -> None:
        self.frames: Dict[str, List[dict]] = defaultdict(list)
        self.closed: Dict[str, str] = {}
        self.log: List[tuple] = []

    def send(self, connection_id: str, frame: Dict[str, Any]) -> None:
        if connection_id in self.closed:
            return
        self.frames[connection_id].append(frame)
        self.log.append(("send", connection_id, frame["type"]))

    def close(self, connection_id: str, reason: str = "") -> None:
        self.closed[connection_id] = reason
        self.log.append(("close", connection_id, reason))

    def of_type(self, connection_id: str, type_: str) -> List[dict]:
        return [f for f in self.frames[connection_id] if f["type"] == type_]

    def last(self, connection_id: str, type_: str) -> dict:
        matches = self.of_type(connection_id, type_)
        assert matches, f"no {type_} frame for {connection_id}"
        return matches[-1]

    def reset(self) -> None:
        self.frames.clear()
        self.log.clear()


@pytest.fixture
def clock():
    """Mutable clock; tests advance ``clock['now']``."""
    return {"now": T0}


@pytest.fixture
def settings_overrides():
    return {}


@pytest.fixture
def settings(settings_overrides):
    data = {"synthetic": {"enabled": False}}
    data.update(settings_overrides)
    return Settings.model_validate(data)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def core(settings, clock, transport):
    state = ChatState(settings, now=lambda: clock["now"])
    engine = BroadcastEngine(state, transport)
    moderation = ModerationController(state, engine)
    dispatcher = EventDispatcher(engine, moderation)
    sweeper = Sweeper(state, engine)
    yield SimpleNamespace(
        state=state,
        engine=engine,
        moderation=moderation,
        dispatcher=dispatcher,
        sweeper=sweeper,
        transport=transport,
        clock=clock,
    )
    state.close()


@pytest.fixture
def send(core):
    """Feed a raw inbound frame through the dispatcher."""

    def _send(connection_id: str, frame: dict, address: str = "10.0.0.1") -> None:
        core.dispatcher.handle_raw(connection_id, address, frame)

    return _send


@pytest.fixture
def join(send):
    def _join(connection_id: str, name: str, gender: str = "Female", country: str = "US", address: str = "10.0.0.1", **extra):
        frame = {"type": "join", "name": name, "gender": gender, "country": country, **extra}
        send(connection_id, frame, address)

    return _join


@pytest.fixture
def admin(send, core):
    """An authenticated admin connection id."""
    send("admin-1", {"type": "admin_login", "username": "admin", "password": "admin123"})
    assert "admin-1" in core.engine.admins
    core.transport.reset()
    return "admin-1"
