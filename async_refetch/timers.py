"""Cancellable one-shot timers owned by an entry."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

_logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class ScheduledCall:
    """Run ``callback`` once after ``delay`` seconds unless cancelled first.

    The callback is synchronous; anything long-running it starts must be its
    own task, so cancelling a timer never cancels work it already launched.
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[[], None],
        *,
        sleep_fn: Optional[SleepFn] = None,
        name: Optional[str] = None,
    ) -> None:
        self.delay = max(0.0, float(delay))
        self._callback = callback
        self._sleep: SleepFn = sleep_fn or asyncio.sleep
        self._fired = False
        self._task = asyncio.create_task(self._run(), name=name)

    async def _run(self) -> None:
        await self._sleep(self.delay)
        self._fired = True
        try:
            self._callback()
        except Exception:
            _logger.exception("scheduled callback failed", extra={"op": "timer"})

    @property
    def active(self) -> bool:
        return not self._task.done()

    @property
    def fired(self) -> bool:
        return self._fired

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()


__all__ = ["ScheduledCall", "SleepFn"]
