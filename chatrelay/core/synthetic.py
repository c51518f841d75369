from __future__ import annotations

import logging
import random
from typing import List, Optional, Sequence

from .broadcast import BroadcastEngine
from .errors import ChatError
from .messages import Message
from .reference import CANNED_LINES
from .rooms import ROOM_GLOBAL
from .sessions import Profile, Session
from .state import ChatState
from .timers import PeriodicTask, SubmitFn

log = logging.getLogger("chatrelay.core.synthetic")

SYNTHETIC_ADDRESS = "synthetic"


class SyntheticPool:
    """Simulated participants that post canned lines while real users are online."""

    def __init__(
        self,
        state: ChatState,
        engine: BroadcastEngine,
        *,
        lines: Sequence[str] = CANNED_LINES,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.state = state
        self.engine = engine
        self.cfg = state.settings.synthetic
        self.lines = tuple(lines)
        self.rng = rng or random.Random()
        self.participants: List[Session] = []
        self._timer = PeriodicTask("synthetic", self.cfg.interval_ms, self.tick)

    def seed(self) -> List[Session]:
        limits = self.state.settings.limits
        for index, entry in enumerate(self.cfg.participants):
            try:
                profile = Profile.validate(
                    entry.name, entry.gender, entry.country, name_min=limits.name_min, name_max=limits.name_max
                )
                session = self.state.sessions.create_session(
                    f"synthetic:{index}", profile, SYNTHETIC_ADDRESS, ROOM_GLOBAL, synthetic=True
                )
            except ChatError as exc:
                log.warning("Skipping synthetic participant %r: %s", entry.name, exc.detail)
                continue
            self.participants.append(session)
        log.info("Seeded %d synthetic participant(s)", len(self.participants))
        return list(self.participants)

    def start(self, submit: Optional[SubmitFn] = None) -> None:
        self._timer.start(submit)

    async def stop(self) -> None:
        await self._timer.stop()

    def tick(self) -> Optional[Message]:
        if not self.lines:
            return None
        if not self.state.sessions.list_online(lambda s: not s.is_synthetic):
            return None
        alive = [s for s in self.participants if s.session_id in self.state.sessions]
        if not alive:
            return None
        author = self.rng.choice(alive)
        rooms = [r.room_id for r in self.state.registry.rooms() if r.admits(author.gender)]
        room_id = self.rng.choice(rooms)
        return self.engine.post_synthetic(author, room_id, self.rng.choice(self.lines))


__all__ = ["SyntheticPool", "SYNTHETIC_ADDRESS"]
