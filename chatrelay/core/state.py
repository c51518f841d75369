from __future__ import annotations

import logging
from typing import Callable

from ..config import Settings
from .messages import DirectMessageRing, MessageLog
from .proto import now_ms
from .reports import ReportBook
from .rooms import DEFAULT_ROOMS, RoomRegistry
from .sessions import BanList, SessionStore

log = logging.getLogger("chatrelay.core.state")


class ChatState:
    """All volatile relay state, owned by one runtime and injected into the core."""

    def __init__(self, settings: Settings, now: Callable[[], int] = now_ms) -> None:
        limits = settings.limits
        self.settings = settings
        self.now = now
        self.messages = MessageLog([r.room_id for r in DEFAULT_ROOMS], capacity=limits.max_messages_per_room)
        self.registry = RoomRegistry(self.messages, DEFAULT_ROOMS, replay_size=limits.replay_size)
        self.bans = BanList(now=now)
        self.sessions = SessionStore(self.registry, self.bans, max_users=limits.max_users, now=now)
        self.reports = ReportBook(now=now, max_pending=limits.max_pending_reports)
        self.direct_messages = DirectMessageRing(capacity=limits.max_private_messages)
        self.closed = False

    def close(self) -> None:
        """Drop everything; the state is not reused after this."""

        self.sessions.clear()
        self.messages.clear()
        self.reports.clear()
        self.direct_messages.clear()
        self.bans.clear()
        self.closed = True
        log.info("Chat state cleared")


__all__ = ["ChatState"]
