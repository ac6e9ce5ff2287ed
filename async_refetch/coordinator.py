"""Single-flight coordinator.

At most one execution per key is in flight. Every trigger that arrives while
it runs awaits the same task, so the operation is invoked once and all
callers observe the same Settlement. The key, not the arguments, identifies
the unit of work: late joiners with different arguments get the first
caller's result.

Settlement order:
1. clear ``in_flight``
2. apply data/error/status to the entry
3. run settle hooks (persistence, propagation, callbacks, schedulers)

No lock is taken: between the in-flight check and the task registration
there is no await, which is atomic on a single event loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Optional

from .models import Operation, Settlement, Status
from .store import AsyncEntry

_logger = logging.getLogger(__name__)

NowFn = Callable[[], float]
SettleHook = Callable[[AsyncEntry, Settlement], None]


class SingleFlightCoordinator:
    def __init__(self, *, now_fn: Optional[NowFn] = None) -> None:
        self._now: NowFn = now_fn or time.monotonic
        self._hooks: list[SettleHook] = []

    def add_hook(self, hook: SettleHook) -> None:
        """Register a hook run after every applied settlement, in order."""
        self._hooks.append(hook)

    def start(
        self, entry: AsyncEntry, operation: Operation, args: tuple[Any, ...] = ()
    ) -> "asyncio.Task[Settlement]":
        """Start an execution for ``entry`` or return the one already running."""

        if entry.in_flight is not None:
            return entry.in_flight

        # Any pending retry or revalidation is superseded by this run
        entry.cancel_timers()
        entry.args = tuple(args)
        entry.status = Status.LOADING if entry.data is None else Status.REVALIDATING
        task = asyncio.create_task(
            self._run(entry, entry.generation, operation, entry.args),
            name=f"refetch:{entry.key}",
        )
        entry.in_flight = task
        _logger.debug(
            "execution started",
            extra={"op": "execute", "key": entry.key, "status": entry.status.value},
        )
        return task

    async def execute(
        self, entry: AsyncEntry, operation: Operation, args: tuple[Any, ...] = ()
    ) -> Settlement:
        """Run or join the in-flight execution for ``entry``.

        Awaited through ``asyncio.shield`` so a cancelled caller does not
        cancel the execution the other callers share.
        """
        return await asyncio.shield(self.start(entry, operation, args))

    async def _run(
        self,
        entry: AsyncEntry,
        generation: int,
        operation: Operation,
        args: tuple[Any, ...],
    ) -> Settlement:
        try:
            data = await operation(*args)
        except Exception as exc:
            settlement = Settlement.failure(entry.key, exc)
        except BaseException:
            # Cancelled: release the key so the next trigger runs again
            if entry.generation == generation and entry.in_flight is asyncio.current_task():
                entry.in_flight = None
                entry.status = entry.resting_status()
                _logger.debug(
                    "execution cancelled", extra={"op": "execute", "key": entry.key}
                )
            raise
        else:
            settlement = Settlement.success(entry.key, data)

        if entry.generation != generation:
            # Entry was cleared while this ran; never clobber the newer state
            _logger.debug(
                "discarding stale settlement", extra={"op": "execute", "key": entry.key}
            )
            return settlement.model_copy(update={"stale": True})

        entry.in_flight = None
        if settlement.ok:
            self._apply_success(entry, settlement.data)
        else:
            self._apply_failure(entry, settlement.error)

        for hook in self._hooks:
            hook(entry, settlement)
        return settlement

    def _apply_success(self, entry: AsyncEntry, data: Any) -> None:
        entry.data = data
        entry.error = None
        entry.is_fetched = True
        entry.is_invalidated = False
        entry.error_count = 0
        entry.seeded = False
        entry.last_success_at = self._now()
        entry.status = Status.SUCCESS if entry.enabled else Status.DISABLED
        _logger.debug("execution succeeded", extra={"op": "execute", "key": entry.key})

    def _apply_failure(self, entry: AsyncEntry, error: Optional[str]) -> None:
        # Prior data stays visible
        entry.error = error
        entry.is_fetched = True
        entry.error_count += 1
        entry.status = Status.ERROR if entry.enabled else Status.DISABLED
        _logger.warning(
            "operation failed",
            extra={
                "op": "execute",
                "key": entry.key,
                "error": error,
                "error_count": entry.error_count,
            },
        )


__all__ = ["SingleFlightCoordinator", "SettleHook", "NowFn"]
