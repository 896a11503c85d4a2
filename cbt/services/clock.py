"""Countdown clock for an exam session.

The clock only ever calls ``ExamSession.tick``; the session itself decides
when time is up and submits exactly once. Two ways to drive it:

- ``run()``: an asyncio loop that ticks every ``interval`` seconds, for
  hosts that keep an event loop per session.
- ``sync()``: catches up from a monotonic time source, for request/response
  hosts that only look at the session when the student does something.
"""

import asyncio
import logging
import threading
import time
from typing import Awaitable, Callable

from cbt import config
from cbt.services.exam_session import ExamSession

logger = logging.getLogger(__name__)


class SessionClock:
    def __init__(
        self,
        session: ExamSession,
        interval: int = config.TICK_SECONDS,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.session = session
        self.interval = interval
        self._monotonic = monotonic
        self._last_sync = monotonic()
        self._running = False
        # Guards _last_sync against concurrent requests for the same session
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._running

    def tick(self) -> bool:
        """Advance one interval. Returns True if this tick forced the submit."""
        with self._lock:
            self._last_sync += self.interval
            return self.session.tick(self.interval)

    def sync(self) -> bool:
        """Apply every whole interval elapsed since the last sync or tick."""
        with self._lock:
            now = self._monotonic()
            steps = int((now - self._last_sync) // self.interval)
            if steps <= 0:
                return False
            self._last_sync += steps * self.interval
            if not self.session.is_active:
                return False
            logger.debug("Session %s: catching up %d ticks", self.session.session_id, steps)
            return self.session.tick(steps * self.interval)

    async def run(self, sleep: Callable[[float], Awaitable] = asyncio.sleep) -> None:
        """Tick until the session leaves Active or ``stop()`` is called."""
        self._running = True
        try:
            while self._running and self.session.is_active:
                await sleep(self.interval)
                if not self._running:
                    break
                self.tick()
        finally:
            self._running = False

    def stop(self) -> None:
        self._running = False

