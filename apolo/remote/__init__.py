from .base import (
    RealtimeChannel,
    RemoteError,
    Subscription,
    TableStore,
    UniqueViolation,
    UnknownTable,
)
from .sql import SQLTableStore
from .http import HttpTableStore

__all__ = [
    "HttpTableStore",
    "RealtimeChannel",
    "RemoteError",
    "SQLTableStore",
    "Subscription",
    "TableStore",
    "UniqueViolation",
    "UnknownTable",
]
