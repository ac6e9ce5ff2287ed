"""Invalidation/propagation engine.

After key K succeeds:
- every key in K's ``update_queries`` receives K's data as if it had fetched
  it itself, without running its own operation;
- every key in K's ``invalidate_queries`` is flagged stale, so its next
  trigger executes regardless of the revalidation window.

Propagation is one level deep. Targets are written directly and never
settle, so their own ``update_queries``/``invalidate_queries`` do not fire
and cyclic configurations terminate.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

from .models import QueryOptions, Settlement, Status
from .persistence import PersistenceBridge
from .revalidation import RevalidationScheduler
from .store import AsyncEntry, EntryStore

_logger = logging.getLogger(__name__)


class PropagationEngine:
    def __init__(
        self,
        store: EntryStore,
        persistence: Optional[PersistenceBridge] = None,
        *,
        revalidation: Optional[RevalidationScheduler] = None,
        now_fn: Optional[Callable[[], float]] = None,
    ) -> None:
        self._store = store
        self._persistence = persistence
        self._revalidation = revalidation
        self._now = now_fn or time.monotonic

    def on_settled(self, entry: AsyncEntry, settlement: Settlement) -> None:
        if settlement.ok:
            self.propagate(entry.key, entry.options, settlement.data)

    def propagate(self, source_key: str, options: QueryOptions, data: Any) -> None:
        for key in options.update_queries:
            if key != source_key:
                self.write(self._store.get_or_create(key), data)
        for key in options.invalidate_queries:
            if key != source_key:
                self._store.get_or_create(key).is_invalidated = True
                _logger.debug(
                    "query invalidated",
                    extra={"op": "invalidate", "key": key, "source": source_key},
                )

    def write(self, target: AsyncEntry, data: Any) -> None:
        """Install ``data`` on ``target`` as a success it did not fetch."""
        target.data = data
        target.error = None
        target.is_fetched = True
        target.seeded = False
        target.last_success_at = self._now()
        if target.in_flight is not None:
            # Its own run is still going; that settlement wins when it lands
            target.status = Status.REVALIDATING
        elif not target.enabled:
            target.status = Status.DISABLED
        else:
            target.status = Status.SUCCESS
        if target.in_flight is None:
            # Retries follow failures only; fresh data restarts the period
            target.cancel_retry()
            if self._revalidation is not None:
                self._revalidation.arm(target)
        if target.options.store and self._persistence is not None:
            self._persistence.save(target.key, data)
        _logger.debug("query updated", extra={"op": "update", "key": target.key})


__all__ = ["PropagationEngine"]
