"""Error taxonomy.

- OperationFailure: the caller-supplied operation raised. Captured into the
  entry's ``error`` field; only raised on demand via
  ``Settlement.raise_for_error()``.
- PersistenceFailure: the snapshot backend could not read or write. The
  persistence bridge swallows it and treats it as a cache miss.
- ConfigurationError: invalid options or settings, raised at registration.
"""

from __future__ import annotations

from typing import Optional


class RefetchError(Exception):
    """Base class for all errors raised by async_refetch."""


class ConfigurationError(RefetchError, ValueError):
    """Invalid per-key options or a call the key's configuration cannot serve."""


class OperationFailure(RefetchError):
    def __init__(self, key: str, message: Optional[str]) -> None:
        super().__init__(f"operation for {key!r} failed: {message}")
        self.key = key
        self.message = message


class PersistenceFailure(RefetchError):
    """A snapshot backend failed to load or store a value."""


__all__ = ["RefetchError", "ConfigurationError", "OperationFailure", "PersistenceFailure"]
