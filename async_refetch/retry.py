"""Retry scheduler: fixed-delay re-execution after a failed settlement.

A retry is armed when ``error_count <= retry_limit`` and the entry is enabled
and observed. ``error_count`` only resets on success, so consecutive
failures walk up to the limit at a fixed ``retry_time`` interval and then
stop; the entry stays in Error until a manual revalidate or a new mount.
"""

from __future__ import annotations

import logging
from functools import partial
from typing import Callable, Optional

from .models import Settlement
from .store import AsyncEntry
from .timers import ScheduledCall, SleepFn

_logger = logging.getLogger(__name__)

SpawnFn = Callable[[AsyncEntry], object]


class RetryScheduler:
    def __init__(self, spawn: SpawnFn, *, sleep_fn: Optional[SleepFn] = None) -> None:
        self._spawn = spawn
        self._sleep = sleep_fn

    def on_settled(self, entry: AsyncEntry, settlement: Settlement) -> None:
        if settlement.ok:
            entry.cancel_retry()
            return
        if self.should_retry(entry):
            self.schedule(entry)

    def should_retry(self, entry: AsyncEntry) -> bool:
        limit = entry.options.retry_limit or 0
        if entry.error_count > limit:
            _logger.info(
                "retry limit reached",
                extra={"op": "retry", "key": entry.key, "error_count": entry.error_count},
            )
            return False
        return entry.enabled and entry.subscriber_count > 0 and entry.operation is not None

    def schedule(self, entry: AsyncEntry) -> ScheduledCall:
        entry.cancel_retry()
        delay = entry.options.retry_time or 0.0
        entry.retry_timer = ScheduledCall(
            delay,
            partial(self._fire, entry, entry.generation),
            sleep_fn=self._sleep,
            name=f"refetch-retry:{entry.key}",
        )
        _logger.info(
            "retry scheduled",
            extra={
                "op": "retry",
                "key": entry.key,
                "attempt": entry.error_count + 1,
                "delay": delay,
            },
        )
        return entry.retry_timer

    def _fire(self, entry: AsyncEntry, generation: int) -> None:
        entry.retry_timer = None
        if generation != entry.generation:
            return
        if not entry.enabled or entry.subscriber_count <= 0:
            return
        self._spawn(entry)


__all__ = ["RetryScheduler", "SpawnFn"]
