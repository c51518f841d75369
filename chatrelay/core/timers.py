from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

log = logging.getLogger("chatrelay.core.timers")

SubmitFn = Callable[[Callable[[], None]], None]


def _run_inline(fn: Callable[[], None]) -> None:
    fn()


class PeriodicTask:
    """One asyncio task that hands ``fn`` to ``submit`` every ``interval_ms``.

    ``submit`` is normally the runtime's event queue, so ticks are serialized
    with inbound events. ``start``/``stop`` bracket the task's life.
    """

    def __init__(self, name: str, interval_ms: int, fn: Callable[[], None]) -> None:
        self.name = name
        self.interval_ms = interval_ms
        self.fn = fn
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, submit: Optional[SubmitFn] = None) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(submit or _run_inline), name=self.name)
        log.debug("Started timer %s every %dms", self.name, self.interval_ms)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        log.debug("Stopped timer %s", self.name)

    async def _loop(self, submit: SubmitFn) -> None:
        while True:
            await asyncio.sleep(max(1, self.interval_ms) / 1000)
            try:
                submit(self.fn)
            except Exception:
                log.exception("Timer %s failed to submit tick", self.name)


__all__ = ["PeriodicTask", "SubmitFn"]
