"""Entry Store: one mutable ``AsyncEntry`` per key.

Pure state container. Entries are created lazily on first reference and live
as long as the store; unmounting the last observer pauses an entry's timers
but never drops it. Only the coordinator, the schedulers and the propagation
engine mutate entries.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

from .errors import ConfigurationError
from .models import Operation, QueryOptions, QueryState, Settlement, Status
from .timers import ScheduledCall


@dataclass
class AsyncEntry:
    key: str
    options: QueryOptions
    data: Any = None
    error: Optional[str] = None
    status: Status = Status.IDLE
    is_fetched: bool = False
    is_invalidated: bool = False
    error_count: int = 0
    in_flight: Optional["asyncio.Task[Settlement]"] = None
    subscriber_count: int = 0
    revalidation_timer: Optional[ScheduledCall] = None
    retry_timer: Optional[ScheduledCall] = None

    operation: Optional[Operation] = None
    # Arguments of the last execution; reused by retries and revalidation
    args: tuple[Any, ...] = ()
    # Bumped by reset(); settlements from an older generation are discarded
    generation: int = 0
    last_success_at: Optional[float] = None
    seeded: bool = False

    @property
    def enabled(self) -> bool:
        return self.options.enable

    def cancel_retry(self) -> None:
        if self.retry_timer is not None:
            self.retry_timer.cancel()
            self.retry_timer = None

    def cancel_revalidation(self) -> None:
        if self.revalidation_timer is not None:
            self.revalidation_timer.cancel()
            self.revalidation_timer = None

    def cancel_timers(self) -> None:
        self.cancel_retry()
        self.cancel_revalidation()

    def resting_status(self) -> Status:
        """Status for an entry with nothing in flight and no fresh outcome."""
        return Status.IDLE if self.enabled else Status.DISABLED

    def reset(self) -> None:
        """Forget cached data and outcome; observers and operation stay."""
        self.cancel_timers()
        self.generation += 1
        self.in_flight = None
        self.data = None
        self.error = None
        self.is_fetched = False
        self.is_invalidated = False
        self.error_count = 0
        self.last_success_at = None
        self.seeded = False
        self.status = self.resting_status()

    def snapshot(self) -> QueryState:
        return QueryState(
            key=self.key,
            data=self.data,
            error=self.error,
            status=self.status,
            error_count=self.error_count,
            is_fetched=self.is_fetched,
            is_invalidated=self.is_invalidated,
            subscriber_count=self.subscriber_count,
        )

    def settlement(self) -> Settlement:
        """The entry's current outcome, for triggers that did not execute."""
        return Settlement(
            key=self.key,
            ok=self.error is None,
            data=self.data,
            error=self.error,
            executed=False,
        )


class EntryStore:
    """Process-wide (or client-wide) mapping of key to AsyncEntry."""

    def __init__(self, *, default_options: Optional[QueryOptions] = None) -> None:
        self._default_options = default_options or QueryOptions()
        self._entries: Dict[str, AsyncEntry] = {}

    def get(self, key: str) -> Optional[AsyncEntry]:
        return self._entries.get(key)

    def get_or_create(self, key: str) -> AsyncEntry:
        entry = self._entries.get(key)
        if entry is None:
            if not isinstance(key, str) or not key.strip():
                raise ConfigurationError("query key must be a non-empty string")
            entry = AsyncEntry(key=key, options=self._default_options)
            entry.status = entry.resting_status()
            self._entries[key] = entry
        return entry

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[AsyncEntry]:
        return iter(list(self._entries.values()))

    def keys(self) -> list[str]:
        return list(self._entries)


__all__ = ["AsyncEntry", "EntryStore"]
