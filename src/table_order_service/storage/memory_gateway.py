"""Dict-backed storage gateway for local development and tests."""

import asyncio
import copy
from collections.abc import Mapping
from typing import Any

from table_order_service.storage.gateway import ChangeType, StorageGateway, TableSchema, matches_filter


class InMemoryGateway(StorageGateway):
    """Storage gateway keeping every table in process memory.

    Records are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self, schemas: dict[str, TableSchema] | None = None) -> None:
        super().__init__(schemas)
        self._tables: dict[str, dict[tuple[Any, ...], dict[str, Any]]] = {
            name: {} for name in self.schemas
        }

    def _key_tuple(self, table: str, key: Mapping[str, Any]) -> tuple[Any, ...]:
        schema = self.schema_for(table)
        missing = [name for name in schema.key_fields if name not in key]
        if missing:
            raise ValueError(f"Key for '{table}' is missing {', '.join(missing)}")
        return tuple(key[name] for name in schema.key_fields)

    async def upsert(
        self, table: str, key: Mapping[str, Any], record: Mapping[str, Any]
    ) -> dict[str, Any]:
        # Yield like a network round trip would
        await asyncio.sleep(0)
        key_tuple = self._key_tuple(table, key)
        stored = copy.deepcopy({**record, **key})
        rows = self._tables[table]
        change_type = ChangeType.UPDATE if key_tuple in rows else ChangeType.INSERT
        rows[key_tuple] = stored

        self._notify(table, change_type, copy.deepcopy(stored))
        return copy.deepcopy(stored)

    async def select(self, table: str, filters: Mapping[str, Any]) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        self.schema_for(table)
        return [
            copy.deepcopy(row)
            for row in self._tables[table].values()
            if matches_filter(row, filters)
        ]

    async def delete(self, table: str, filters: Mapping[str, Any]) -> int:
        await asyncio.sleep(0)
        self.schema_for(table)
        rows = self._tables[table]
        doomed = [key for key, row in rows.items() if matches_filter(row, filters)]
        for key_tuple in doomed:
            removed = rows.pop(key_tuple)
            self._notify(table, ChangeType.DELETE, removed)
        return len(doomed)

    async def insert_if_absent(
        self, table: str, key: Mapping[str, Any], record: Mapping[str, Any]
    ) -> bool:
        await asyncio.sleep(0)
        key_tuple = self._key_tuple(table, key)
        rows = self._tables[table]
        if key_tuple in rows:
            return False

        stored = copy.deepcopy({**record, **key})
        rows[key_tuple] = stored
        self._notify(table, ChangeType.INSERT, copy.deepcopy(stored))
        return True
