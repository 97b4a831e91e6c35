"""Storage gateway interface and in-process change feed.

The gateway is a serializable table store with upsert, filtered read, delete
and change-subscription primitives. Every successful write is published to a
``ChangeFeed`` which delivers matching events to subscribers asynchronously,
one asyncio task per delivery.
"""

import asyncio
import functools
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

CONFIRMATIONS_TABLE = "order_confirmations"
SUBMISSION_CLAIMS_TABLE = "submission_claims"
ORDERS_TABLE = "orders"
ORDER_ITEMS_TABLE = "order_items"
MENU_ITEMS_TABLE = "menu_items"
FEEDBACK_TABLE = "feedback"
RESERVATIONS_TABLE = "reservations"


class ChangeType(str, Enum):
    """Kind of write that produced a change event."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    """A change to one record of a logical table.

    Attributes:
        table: Logical table name
        change_type: Insert, update or delete
        record: The record after the write (before it, for deletes)
    """

    table: str
    change_type: ChangeType
    record: dict[str, Any]


@dataclass(frozen=True)
class TableSchema:
    """Key layout of a logical table."""

    partition_key: str
    sort_key: str | None = None

    @property
    def key_fields(self) -> tuple[str, ...]:
        if self.sort_key is None:
            return (self.partition_key,)
        return (self.partition_key, self.sort_key)

    def key_of(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Extract the key fields of a record.

        Raises:
            KeyError: If the record is missing a key field
        """
        return {name: record[name] for name in self.key_fields}


TABLE_SCHEMAS: dict[str, TableSchema] = {
    CONFIRMATIONS_TABLE: TableSchema(partition_key="table_id", sort_key="user_id"),
    SUBMISSION_CLAIMS_TABLE: TableSchema(partition_key="table_id", sort_key="round_key"),
    ORDERS_TABLE: TableSchema(partition_key="id"),
    ORDER_ITEMS_TABLE: TableSchema(partition_key="order_id", sort_key="id"),
    MENU_ITEMS_TABLE: TableSchema(partition_key="id"),
    FEEDBACK_TABLE: TableSchema(partition_key="id"),
    RESERVATIONS_TABLE: TableSchema(partition_key="id"),
}

ChangeCallback = Callable[[ChangeEvent], Awaitable[None]]


Scope = tuple[str, tuple[tuple[str, Any], ...]]


def scope_of(table: str, filters: Mapping[str, Any]) -> Scope:
    return (table, tuple(sorted(filters.items())))


def matches_filter(record: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    """Return True when every filter value equals the record's field."""
    return all(record.get(name) == value for name, value in filters.items())


@dataclass(eq=False)
class Subscription:
    """Handle for a change subscription.

    Attributes:
        table: Logical table being watched
        filters: Equality filter a record must match to be delivered
        callback: Coroutine function invoked with each matching event
    """

    table: str
    filters: dict[str, Any]
    callback: ChangeCallback
    _feed: "ChangeFeed | None" = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self._feed is not None

    def unsubscribe(self) -> None:
        """Stop delivering events to this subscription. Safe to call twice."""
        if self._feed is not None:
            self._feed.remove(self)
            self._feed = None


class ChangeFeed:
    """In-process fan-out of change events to subscribers."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        # In-flight deliveries per (table, subscription filter)
        self._pending: dict[Scope, set[asyncio.Task[None]]] = {}

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def add(self, table: str, filters: Mapping[str, Any], callback: ChangeCallback) -> Subscription:
        subscription = Subscription(table=table, filters=dict(filters), callback=callback, _feed=self)
        self._subscriptions.append(subscription)
        return subscription

    def remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event: ChangeEvent) -> None:
        """Schedule delivery of an event to every matching subscriber.

        Must be called from within a running event loop.
        """
        loop = asyncio.get_running_loop()
        for subscription in list(self._subscriptions):
            if subscription.table != event.table:
                continue
            if not matches_filter(event.record, subscription.filters):
                continue
            scope = scope_of(subscription.table, subscription.filters)
            task = loop.create_task(self._deliver(subscription, event))
            self._pending.setdefault(scope, set()).add(task)
            task.add_done_callback(functools.partial(self._finished, scope))

    def _finished(self, scope: Scope, task: asyncio.Task[None]) -> None:
        tasks = self._pending.get(scope)
        if tasks is None:
            return
        tasks.discard(task)
        if not tasks:
            del self._pending[scope]

    async def _deliver(self, subscription: Subscription, event: ChangeEvent) -> None:
        if not subscription.active:
            return
        try:
            await subscription.callback(event)
        except Exception:
            # Subscriber failures must not stop delivery to other subscribers
            logger.exception(f"Change callback failed for {event.table} {event.change_type.value}")

    def _pending_tasks(self, scope: Scope | None) -> list[asyncio.Task[None]]:
        if scope is None:
            return [task for tasks in self._pending.values() for task in tasks]
        return list(self._pending.get(scope, ()))

    async def drain(self, table: str | None = None, filters: Mapping[str, Any] | None = None) -> None:
        """Wait until scheduled deliveries, and any they schedule, finish.

        With ``table`` given, only deliveries to subscriptions on that table
        with exactly ``filters`` are awaited; busy subscribers elsewhere do
        not hold the caller up. Must not be awaited from inside a change
        callback.
        """
        scope = None if table is None else scope_of(table, filters or {})
        tasks = self._pending_tasks(scope)
        while tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            tasks = self._pending_tasks(scope)


class StorageGateway(ABC):
    """Abstract table store with change notifications.

    Implementations raise ``StorageError`` for any backend failure and
    publish a change event for each successful write.
    """

    def __init__(self, schemas: dict[str, TableSchema] | None = None) -> None:
        """Initialize the gateway.

        Args:
            schemas: Key layout per logical table (defaults to TABLE_SCHEMAS)
        """
        self.schemas = schemas if schemas is not None else dict(TABLE_SCHEMAS)
        self.change_feed = ChangeFeed()

    def schema_for(self, table: str) -> TableSchema:
        if table not in self.schemas:
            raise ValueError(f"Unknown table '{table}'")
        return self.schemas[table]

    @abstractmethod
    async def upsert(
        self, table: str, key: Mapping[str, Any], record: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Insert or overwrite the record with the given key.

        Args:
            table: Logical table name
            key: Values for the table's key fields
            record: Remaining fields to store

        Returns:
            dict: The stored record, key fields included
        """

    @abstractmethod
    async def select(self, table: str, filters: Mapping[str, Any]) -> list[dict[str, Any]]:
        """Return every record whose fields equal all filter values."""

    @abstractmethod
    async def delete(self, table: str, filters: Mapping[str, Any]) -> int:
        """Delete every matching record.

        Returns:
            int: Number of records deleted
        """

    @abstractmethod
    async def insert_if_absent(
        self, table: str, key: Mapping[str, Any], record: Mapping[str, Any]
    ) -> bool:
        """Insert the record only if no record with the same key exists.

        Returns:
            bool: True if this call created the record, False if it existed
        """

    def subscribe(
        self, table: str, filters: Mapping[str, Any], on_change: ChangeCallback
    ) -> Subscription:
        """Invoke ``on_change`` for every write to a matching record.

        Returns:
            Subscription: Handle whose ``unsubscribe()`` stops delivery
        """
        self.schema_for(table)
        return self.change_feed.add(table, filters, on_change)

    async def settle(self, table: str | None = None, filters: Mapping[str, Any] | None = None) -> None:
        """Wait for pending change notifications to be delivered.

        Args:
            table: Only wait for subscriptions on this table (all tables when omitted)
            filters: Subscription filter to wait for, together with ``table``
        """
        await self.change_feed.drain(table, filters)

    def _notify(self, table: str, change_type: ChangeType, record: dict[str, Any]) -> None:
        self.change_feed.publish(ChangeEvent(table=table, change_type=change_type, record=record))
