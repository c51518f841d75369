from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from . import proto
from .broadcast import BroadcastEngine
from .state import ChatState
from .timers import PeriodicTask, SubmitFn

log = logging.getLogger("chatrelay.core.sweeper")

INACTIVE_REASON = "Disconnected for inactivity"


@dataclass
class SweepResult:
    purged: int = 0
    evicted: List[str] = field(default_factory=list)
    failed_rooms: List[str] = field(default_factory=list)


class Sweeper:
    """Retires expired messages and inactive sessions on a fixed interval."""

    def __init__(self, state: ChatState, engine: BroadcastEngine) -> None:
        self.state = state
        self.engine = engine
        self.cfg = state.settings.sweeper
        self._ticking = False
        self._timer = PeriodicTask("sweeper", self.cfg.interval_ms, self.tick)

    def start(self, submit: Optional[SubmitFn] = None) -> None:
        self._timer.start(submit)

    async def stop(self) -> None:
        await self._timer.stop()

    @property
    def running(self) -> bool:
        return self._timer.running

    def tick(self, now: Optional[int] = None) -> SweepResult:
        result = SweepResult()
        if self._ticking:
            log.debug("Sweep already in progress; skipping")
            return result
        self._ticking = True
        try:
            if now is None:
                now = self.state.now()
            if self.cfg.purge_messages:
                self._purge(now - self.cfg.retention_ms, result)
            if self.cfg.evict_inactive:
                self._evict(now - self.cfg.inactive_timeout_ms, result)
        finally:
            self._ticking = False
        if result.purged or result.evicted:
            log.info("Sweep purged %d message(s), evicted %d session(s)", result.purged, len(result.evicted))
        return result

    def _purge(self, cutoff_ms: int, result: SweepResult) -> None:
        for room_id in self.state.messages.room_ids:
            try:
                result.purged += self.state.messages.purge_older_than(room_id, cutoff_ms)
            except Exception:
                log.exception("Purge failed for room %s", room_id)
                result.failed_rooms.append(room_id)

    def _evict(self, cutoff_ms: int, result: SweepResult) -> None:
        stale = self.state.sessions.list_online(lambda s: not s.is_synthetic and s.last_activity_ms < cutoff_ms)
        for session in stale:
            self.engine.force_disconnect(session, proto.T_KICKED, INACTIVE_REASON)
            result.evicted.append(session.name)


__all__ = ["Sweeper", "SweepResult"]
