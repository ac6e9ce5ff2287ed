"""Top-level package for async-refetch.

Exports the client, its models, the persistence backends and the
centralized logging configuration.
"""

from .client import Query, RefetchClient
from .config import Settings
from .errors import ConfigurationError, OperationFailure, PersistenceFailure, RefetchError
from .fetchers import HttpJsonFetcher
from .logging_config import configure_logging
from .models import QueryOptions, QueryState, Settlement, Status
from .persistence import JsonFileKeyValueStore, KeyValueStore, MemoryKeyValueStore

__all__ = [
    "RefetchClient",
    "Query",
    "Settings",
    "QueryOptions",
    "QueryState",
    "Settlement",
    "Status",
    "HttpJsonFetcher",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "RefetchError",
    "ConfigurationError",
    "OperationFailure",
    "PersistenceFailure",
    "configure_logging",
]
