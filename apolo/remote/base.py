"""The tabular data-access collaborator used by the client core.

Every table offers the same four fallible calls. Filters are a mapping of
column to value; a list or tuple value means "column IN values". Ordering is
a sequence of ``(column, descending)`` pairs.
"""
import abc
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"

Row = Dict[str, Any]
Filters = Mapping[str, Any]
Order = Sequence[Tuple[str, bool]]
RowCallback = Callable[[Row], None]


class RemoteError(Exception):
    """A remote call failed; ``code`` carries the store's error code if any."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class UniqueViolation(RemoteError):
    def __init__(self, message: str = "duplicate key value violates unique constraint"):
        super().__init__(message, code=UNIQUE_VIOLATION)


class UnknownTable(RemoteError):
    def __init__(self, table: str):
        super().__init__(f"Unknown table: {table}", code="42P01")


def matches(row: Mapping[str, Any], filters: Optional[Filters]) -> bool:
    for column, expected in (filters or {}).items():
        value = row.get(column)
        if isinstance(expected, (list, tuple, set)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class Subscription:
    def __init__(self, channel: "RealtimeChannel", table: str, filters: Optional[Filters], callback: RowCallback):
        self._channel = channel
        self.table = table
        self.filters = dict(filters or {})
        self.callback = callback

    def unsubscribe(self) -> None:
        self._channel.remove(self)


class RealtimeChannel:
    """Push feed of inserted rows, fanned out to matching subscribers."""

    def __init__(self):
        self._subscriptions: List[Subscription] = []

    def subscribe(self, table: str, filters: Optional[Filters], callback: RowCallback) -> Subscription:
        subscription = Subscription(self, table, filters, callback)
        self._subscriptions.append(subscription)
        return subscription

    def remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, table: str, row: Row) -> None:
        for subscription in list(self._subscriptions):
            if subscription.table != table or not matches(row, subscription.filters):
                continue
            try:
                subscription.callback(dict(row))
            except Exception:
                # A broken subscriber must not fail the write that triggered it
                logger.exception("Realtime subscriber failed", extra={"table": table})


class TableStore(abc.ABC):
    """Per-table CRUD plus a realtime channel for inserts."""

    def __init__(self, channel: Optional[RealtimeChannel] = None):
        self.channel = channel or RealtimeChannel()

    @abc.abstractmethod
    async def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        order: Optional[Order] = None,
        limit: Optional[int] = None,
    ) -> List[Row]:
        ...

    @abc.abstractmethod
    async def insert(self, table: str, row: Row) -> Row:
        ...

    @abc.abstractmethod
    async def update(self, table: str, filters: Filters, values: Row) -> None:
        ...

    @abc.abstractmethod
    async def delete(self, table: str, filters: Filters) -> None:
        ...

    async def select_one(self, table: str, filters: Filters) -> Optional[Row]:
        rows = await self.select(table, filters, limit=1)
        return rows[0] if rows else None

    def subscribe(self, table: str, filters: Optional[Filters], callback: RowCallback) -> Subscription:
        return self.channel.subscribe(table, filters, callback)
