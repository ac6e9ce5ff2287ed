"""Revalidation scheduler: periodic background re-execution.

While an entry is observed, has ``revalidation`` on and sits in Success, a
timer of ``revalidate_time`` re-executes it. The period is measured from the
end of the previous run. Losing the last observer suspends the timer;
regaining one resumes it with the remaining time, or fires at once when the
period already elapsed or the entry was invalidated meanwhile.
"""

from __future__ import annotations

import logging
import time
from functools import partial
from typing import Callable, Optional

from .models import Settlement, Status
from .retry import SpawnFn
from .store import AsyncEntry
from .timers import ScheduledCall, SleepFn

_logger = logging.getLogger(__name__)


class RevalidationScheduler:
    def __init__(
        self,
        spawn: SpawnFn,
        *,
        now_fn: Optional[Callable[[], float]] = None,
        sleep_fn: Optional[SleepFn] = None,
    ) -> None:
        self._spawn = spawn
        self._now = now_fn or time.monotonic
        self._sleep = sleep_fn

    def on_settled(self, entry: AsyncEntry, settlement: Settlement) -> None:
        if settlement.ok:
            self.arm(entry)
        else:
            entry.cancel_revalidation()

    def is_active(self, entry: AsyncEntry) -> bool:
        return (
            entry.options.revalidation
            and entry.enabled
            and entry.subscriber_count > 0
            and entry.status is Status.SUCCESS
            and entry.operation is not None
        )

    def elapsed(self, entry: AsyncEntry) -> Optional[float]:
        """Seconds since the last successful run; None if there was none."""
        if entry.last_success_at is None:
            return None
        return self._now() - entry.last_success_at

    def is_due(self, entry: AsyncEntry) -> bool:
        elapsed = self.elapsed(entry)
        period = entry.options.revalidate_time or 0.0
        return elapsed is None or elapsed >= period

    def arm(self, entry: AsyncEntry, delay: Optional[float] = None) -> Optional[ScheduledCall]:
        entry.cancel_revalidation()
        if not self.is_active(entry):
            return None
        if delay is None:
            delay = entry.options.revalidate_time or 0.0
        entry.revalidation_timer = ScheduledCall(
            delay,
            partial(self._tick, entry, entry.generation),
            sleep_fn=self._sleep,
            name=f"refetch-revalidate:{entry.key}",
        )
        return entry.revalidation_timer

    def resume(self, entry: AsyncEntry) -> bool:
        """Restart revalidation after (re)mount. True if a run was started now."""
        if entry.in_flight is not None or not self.is_active(entry):
            return False
        if entry.is_invalidated or self.is_due(entry):
            _logger.debug("revalidating on resume", extra={"op": "revalidate", "key": entry.key})
            self._spawn(entry)
            return True
        period = entry.options.revalidate_time or 0.0
        self.arm(entry, period - (self.elapsed(entry) or 0.0))
        return False

    def pause(self, entry: AsyncEntry) -> None:
        entry.cancel_revalidation()

    def _tick(self, entry: AsyncEntry, generation: int) -> None:
        entry.revalidation_timer = None
        if generation != entry.generation or not self.is_active(entry):
            return
        _logger.debug("revalidation tick", extra={"op": "revalidate", "key": entry.key})
        self._spawn(entry)


__all__ = ["RevalidationScheduler"]
