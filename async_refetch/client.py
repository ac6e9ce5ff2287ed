"""Public entry point: ``RefetchClient`` and the per-key ``Query`` handle.

The client owns one EntryStore and wires the coordinator to the settle hooks
in this order: persistence write, propagation, callbacks, retry,
revalidation. Callers only ever go through the client; entries are never
handed out for direct mutation.

Typical use::

    client = RefetchClient()
    users = client.query("users", fetch_users, auto_fetch=True, revalidation=True)
    async with users.observe():
        ...
        print(users.state.data)
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Dict, Optional

from pydantic import ValidationError

from .config import Settings
from .coordinator import SingleFlightCoordinator
from .errors import ConfigurationError
from .models import Operation, QueryOptions, QueryState, Settlement, Status
from .persistence import JsonFileKeyValueStore, KeyValueStore, MemoryKeyValueStore, PersistenceBridge
from .propagation import PropagationEngine
from .retry import RetryScheduler
from .revalidation import RevalidationScheduler
from .store import AsyncEntry, EntryStore
from .timers import SleepFn

_logger = logging.getLogger(__name__)


def _default_backend(settings: Settings) -> KeyValueStore:
    if settings.REFETCH_STORE_PATH:
        return JsonFileKeyValueStore(settings.REFETCH_STORE_PATH)
    return MemoryKeyValueStore()


class RefetchClient:
    """Keyed registry of asynchronous operations with shared, cached state.

    Parameters are sourced from Settings by default, but can be overridden
    for testability (``now_fn`` drives elapsed-time decisions, ``sleep_fn``
    drives timers).
    """

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        backend: Optional[KeyValueStore] = None,
        now_fn: Optional[Callable[[], float]] = None,
        sleep_fn: Optional[SleepFn] = None,
    ) -> None:
        self._settings = settings or Settings()
        self._now = now_fn or time.monotonic
        self._defaults = QueryOptions(
            retry_limit=self._settings.REFETCH_RETRY_LIMIT,
            retry_time=self._settings.REFETCH_RETRY_TIME_SECONDS,
            revalidate_time=self._settings.REFETCH_REVALIDATE_TIME_SECONDS,
        )
        self._store = EntryStore(default_options=self._defaults)
        self._persistence = PersistenceBridge(
            backend if backend is not None else _default_backend(self._settings),
            prefix=self._settings.REFETCH_STORE_PREFIX,
        )
        self._coordinator = SingleFlightCoordinator(now_fn=self._now)
        self._retry = RetryScheduler(self._spawn, sleep_fn=sleep_fn)
        self._revalidation = RevalidationScheduler(self._spawn, now_fn=self._now, sleep_fn=sleep_fn)
        self._propagation = PropagationEngine(
            self._store, self._persistence, revalidation=self._revalidation, now_fn=self._now
        )

        self._coordinator.add_hook(self._persistence.on_settled)
        self._coordinator.add_hook(self._propagation.on_settled)
        self._coordinator.add_hook(self._notify)
        self._coordinator.add_hook(self._retry.on_settled)
        self._coordinator.add_hook(self._revalidation.on_settled)

    # --- registration ---

    def _resolve_options(
        self, options: Optional[QueryOptions], overrides: Dict[str, Any]
    ) -> QueryOptions:
        try:
            base: Dict[str, Any] = {}
            if options is not None:
                base = {name: getattr(options, name) for name in options.model_fields_set}
            base.update(overrides)
            resolved = QueryOptions(**base)
        except ValidationError as exc:
            raise ConfigurationError(f"invalid query options: {exc}") from exc
        return resolved.model_copy(
            update={
                name: getattr(self._defaults, name)
                for name in ("retry_limit", "retry_time", "revalidate_time")
                if getattr(resolved, name) is None
            }
        )

    def register(
        self,
        key: str,
        operation: Optional[Operation] = None,
        options: Optional[QueryOptions] = None,
        **overrides: Any,
    ) -> QueryState:
        """Attach an operation and options to ``key``, creating the entry lazily.

        Re-registering replaces both; state and observers are kept.
        """

        resolved = self._resolve_options(options, overrides)
        entry = self._store.get_or_create(key)
        if operation is not None:
            entry.operation = operation
        was_enabled = entry.enabled
        entry.options = resolved
        if resolved.is_invalidated:
            entry.is_invalidated = True
        if resolved.store:
            self._persistence.seed(entry)
        if was_enabled != resolved.enable:
            self._apply_enabled(entry)
        elif entry.status is Status.DISABLED and resolved.enable:
            entry.status = Status.IDLE
        return entry.snapshot()

    def query(
        self,
        key: str,
        operation: Operation,
        options: Optional[QueryOptions] = None,
        **overrides: Any,
    ) -> "Query":
        self.register(key, operation, options, **overrides)
        return Query(self, key)

    def _require(self, key: str) -> AsyncEntry:
        entry = self._store.get(key)
        if entry is None or entry.operation is None:
            raise ConfigurationError(f"no operation registered for {key!r}")
        return entry

    # --- triggers ---

    async def execute(self, key: str, operation: Operation, *args: Any) -> Settlement:
        """Execute ``operation(*args)`` for ``key``, joining any in-flight run.

        A disabled key returns its current state without executing. A key
        registered with ``cache=False`` executes fresh on every call.
        """

        entry = self._store.get_or_create(key)
        if entry.in_flight is None:
            # A joiner shares the running call and must not swap its operation
            entry.operation = operation
        if not entry.enabled:
            return entry.settlement()
        if not entry.options.cache:
            return await self._execute_uncached(entry.key, entry.options, operation, args)
        return await self._coordinator.execute(entry, operation, args)

    async def trigger(self, key: str) -> Settlement:
        """Execute only if the cached result cannot be reused.

        Runs when the key was never fetched, is invalidated, holds only a
        persisted snapshot, last failed, or its revalidation window elapsed.
        """

        entry = self._require(key)
        if not entry.enabled:
            return entry.settlement()
        if entry.in_flight is not None:
            return await asyncio.shield(entry.in_flight)
        if not self._needs_fetch(entry):
            return entry.settlement()
        return await self.execute(key, entry.operation, *entry.args)  # type: ignore[arg-type]

    async def revalidate(self, key: str) -> Settlement:
        """Re-run with the last arguments now; any pending retry is dropped."""
        entry = self._require(key)
        return await self.execute(key, entry.operation, *entry.args)  # type: ignore[arg-type]

    def _needs_fetch(self, entry: AsyncEntry) -> bool:
        if not entry.is_fetched or entry.is_invalidated or entry.seeded:
            return True
        if entry.status in (Status.IDLE, Status.ERROR):
            return True
        return entry.options.revalidation and self._revalidation.is_due(entry)

    def _spawn(self, entry: AsyncEntry) -> Optional["asyncio.Task[Settlement]"]:
        if entry.operation is None or not entry.enabled or not entry.options.cache:
            return None
        return self._coordinator.start(entry, entry.operation, entry.args)

    async def _execute_uncached(
        self, key: str, options: QueryOptions, operation: Operation, args: tuple[Any, ...]
    ) -> Settlement:
        try:
            data = await operation(*args)
        except Exception as exc:
            settlement = Settlement.failure(key, exc)
            _logger.warning(
                "operation failed", extra={"op": "execute", "key": key, "error": settlement.error}
            )
        else:
            settlement = Settlement.success(key, data)
            self._propagation.propagate(key, options, data)
        self._invoke_callbacks(key, options, settlement)
        return settlement

    def _notify(self, entry: AsyncEntry, settlement: Settlement) -> None:
        self._invoke_callbacks(entry.key, entry.options, settlement)

    def _invoke_callbacks(self, key: str, options: QueryOptions, settlement: Settlement) -> None:
        callback = options.on_success if settlement.ok else options.on_error
        if callback is None:
            return
        try:
            callback(settlement.data if settlement.ok else settlement.error)
        except Exception:
            _logger.exception("settlement callback failed", extra={"op": "callback", "key": key})

    # --- observers ---

    def mount(self, key: str) -> QueryState:
        """Add an observer. Auto-fetches or resumes revalidation as needed."""
        entry = self._store.get_or_create(key)
        entry.subscriber_count += 1
        self._resume(entry, first=entry.subscriber_count == 1)
        return entry.snapshot()

    def unmount(self, key: str) -> Optional[QueryState]:
        """Drop an observer. The last one leaving pauses retry and revalidation.

        Unknown keys are ignored and return None.
        """
        entry = self._store.get(key)
        if entry is None:
            return None
        entry.subscriber_count = max(0, entry.subscriber_count - 1)
        if entry.subscriber_count == 0:
            entry.cancel_retry()
            self._revalidation.pause(entry)
            _logger.debug("background work paused", extra={"op": "unmount", "key": key})
        return entry.snapshot()

    @asynccontextmanager
    async def observe(self, key: str) -> AsyncIterator[QueryState]:
        state = self.mount(key)
        try:
            yield state
        finally:
            self.unmount(key)

    def _resume(self, entry: AsyncEntry, *, first: bool) -> None:
        if not entry.enabled or entry.in_flight is not None or entry.operation is None:
            return
        if entry.options.auto_fetch and self._needs_fetch(entry):
            self._spawn(entry)
        elif first:
            self._revalidation.resume(entry)

    # --- manual state changes ---

    def set_data(self, key: str, value: Any) -> QueryState:
        """Replace the cached data as if an execution had returned ``value``."""
        entry = self._store.get_or_create(key)
        entry.is_invalidated = False
        self._propagation.write(entry, value)
        return entry.snapshot()

    def invalidate(self, key: str) -> QueryState:
        entry = self._store.get_or_create(key)
        entry.is_invalidated = True
        return entry.snapshot()

    def set_enabled(self, key: str, enabled: bool) -> QueryState:
        entry = self._store.get_or_create(key)
        if entry.enabled != enabled:
            entry.options = entry.options.model_copy(update={"enable": enabled})
            self._apply_enabled(entry)
        return entry.snapshot()

    def _apply_enabled(self, entry: AsyncEntry) -> None:
        if not entry.enabled:
            entry.cancel_timers()
            if entry.in_flight is None:
                entry.status = Status.DISABLED
            return
        if entry.status is Status.DISABLED:
            entry.status = Status.IDLE
        if entry.subscriber_count > 0:
            self._resume(entry, first=True)

    def clear(self, key: str) -> QueryState:
        """Reset ``key`` to a never-fetched entry and drop its snapshot.

        A run already in flight keeps going but its settlement is discarded.
        """
        entry = self._store.get_or_create(key)
        entry.reset()
        if entry.options.store:
            self._persistence.remove(key)
        return entry.snapshot()

    def clear_all(self) -> None:
        for entry in self._store:
            self.clear(entry.key)

    # --- inspection ---

    def state(self, key: str) -> QueryState:
        return self._store.get_or_create(key).snapshot()

    def states(self) -> Dict[str, QueryState]:
        return {entry.key: entry.snapshot() for entry in self._store}

    def __contains__(self, key: object) -> bool:
        return key in self._store

    async def aclose(self) -> None:
        """Cancel every timer and in-flight run; entries are left at rest."""
        pending = []
        for entry in self._store:
            entry.cancel_timers()
            task = entry.in_flight
            if task is not None:
                entry.generation += 1
                entry.in_flight = None
                entry.status = entry.resting_status()
                task.cancel()
                pending.append(task)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


class Query:
    """Handle bound to one key of a RefetchClient."""

    def __init__(self, client: RefetchClient, key: str) -> None:
        self._client = client
        self.key = key

    @property
    def state(self) -> QueryState:
        return self._client.state(self.key)

    async def execute(self, *args: Any) -> Settlement:
        entry = self._client._require(self.key)
        return await self._client.execute(self.key, entry.operation, *args)  # type: ignore[arg-type]

    async def trigger(self) -> Settlement:
        return await self._client.trigger(self.key)

    async def revalidate(self) -> Settlement:
        return await self._client.revalidate(self.key)

    def set_data(self, value: Any) -> QueryState:
        return self._client.set_data(self.key, value)

    def invalidate(self) -> QueryState:
        return self._client.invalidate(self.key)

    def clear(self) -> QueryState:
        return self._client.clear(self.key)

    def mount(self) -> QueryState:
        return self._client.mount(self.key)

    def unmount(self) -> Optional[QueryState]:
        return self._client.unmount(self.key)

    def observe(self) -> AsyncContextManager[QueryState]:
        return self._client.observe(self.key)

    def __repr__(self) -> str:
        return f"Query(key={self.key!r}, status={self.state.status.value})"


__all__ = ["RefetchClient", "Query"]
