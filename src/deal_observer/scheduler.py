"""Periodic loops with drift correction and single-flight execution."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

log = logging.getLogger(__name__)


class PeriodicLoop:
    """Runs one pipeline pass every ``interval`` seconds.

    The time a pass takes is subtracted from the following sleep, so the
    cadence does not drift with slow passes. Passes of the same loop never
    overlap: ``run_once`` skips when a pass is already in flight. Errors are
    logged and the loop moves on to the next tick.
    """

    def __init__(
        self,
        name: str,
        run: Callable[[], Awaitable[Any]],
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.name = name
        self._run = run
        self._interval = interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._running = False
        self.iterations = 0
        self.errors = 0
        self.last_duration: float | None = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def run_once(self) -> tuple[bool, Any]:
        """Run a single pass. Returns ``(ran, result)``; ``ran`` is False when skipped."""
        if self._lock.locked():
            log.warning("Loop %s still running, skipping this tick", self.name)
            return False, None
        async with self._lock:
            start = self._clock()
            result = None
            try:
                result = await self._run()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.errors += 1
                log.error("Loop %s failed: %s", self.name, exc, exc_info=True)
            finally:
                self.iterations += 1
                self.last_duration = self._clock() - start
            log.info("Loop %s took %dms", self.name, int(self.last_duration * 1000))
            return True, result

    def remaining(self) -> float:
        """Seconds left in the current interval after the last pass."""
        if self.last_duration is None:
            return self._interval
        return max(0.0, self._interval - self.last_duration)

    async def run_forever(self) -> None:
        self._running = True
        while self._running:
            await self.run_once()
            if not self._running:
                break
            await self._sleep(self.remaining())

    def stop(self) -> None:
        self._running = False
