"""Pydantic models shared by every component.

``QueryOptions`` is the per-key trigger configuration, ``QueryState`` the
read-only view handed to observers, ``Settlement`` the outcome of one
trigger. None of them embed scheduling logic.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from .errors import OperationFailure

Operation = Callable[..., Awaitable[Any]]


class Status(str, Enum):
    IDLE = "idle"
    DISABLED = "disabled"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"
    REVALIDATING = "revalidating"


class QueryOptions(BaseModel):
    """Per-key trigger configuration.

    ``retry_limit``, ``retry_time`` and ``revalidate_time`` left as ``None``
    are filled from Settings when the key is registered. Durations are in
    seconds.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    enable: bool = True
    cache: bool = True
    store: bool = False
    auto_fetch: bool = False
    retry_limit: Optional[int] = Field(default=None, ge=0)
    retry_time: Optional[float] = Field(default=None, gt=0)
    revalidation: bool = False
    revalidate_time: Optional[float] = Field(default=None, gt=0)
    is_invalidated: bool = False
    invalidate_queries: tuple[str, ...] = ()
    update_queries: tuple[str, ...] = ()
    on_success: Optional[Callable[[Any], Any]] = None
    on_error: Optional[Callable[[Optional[str]], Any]] = None

    @field_validator("invalidate_queries", "update_queries")
    @classmethod
    def _no_blank_keys(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        cleaned = tuple(k.strip() for k in v)
        if any(not k for k in cleaned):
            raise ValueError("query keys must not be empty")
        return cleaned


class QueryState(BaseModel):
    """Snapshot of one key's entry as seen by an observer."""

    model_config = ConfigDict(frozen=True)

    key: str
    data: Any = None
    error: Optional[str] = None
    status: Status = Status.IDLE
    error_count: int = 0
    is_fetched: bool = False
    is_invalidated: bool = False
    subscriber_count: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_loading(self) -> bool:
        return self.status is Status.LOADING

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_success(self) -> bool:
        return self.status is Status.SUCCESS

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_disabled(self) -> bool:
        return self.status is Status.DISABLED

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_revalidating(self) -> bool:
        return self.status is Status.REVALIDATING

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_waiting_data(self) -> bool:
        # Enabled but nothing to show yet
        return not self.is_fetched and self.status is not Status.DISABLED


class Settlement(BaseModel):
    """Outcome handed back to every caller of one trigger.

    ``executed`` is False when the trigger was served from the entry without
    invoking the operation (cached, disabled). ``stale`` marks a settlement
    that arrived after the entry was cleared and was not applied.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    key: str
    ok: bool
    data: Any = None
    error: Optional[str] = None
    executed: bool = True
    stale: bool = False
    exception: Optional[BaseException] = Field(default=None, exclude=True, repr=False)

    @classmethod
    def success(cls, key: str, data: Any) -> "Settlement":
        return cls(key=key, ok=True, data=data)

    @classmethod
    def failure(cls, key: str, exc: BaseException) -> "Settlement":
        return cls(key=key, ok=False, error=str(exc) or type(exc).__name__, exception=exc)

    def raise_for_error(self) -> Any:
        """Return ``data`` or raise OperationFailure chained to the original error."""
        if self.ok:
            return self.data
        raise OperationFailure(self.key, self.error) from self.exception


__all__ = ["Operation", "Status", "QueryOptions", "QueryState", "Settlement"]
