"""DynamoDB implementation of the storage gateway.

Each logical table maps to one DynamoDB table. Blocking boto3 calls run in a
worker thread so a slow round trip never stalls other participant sessions.
Unlike lookups elsewhere that return None on failure, every ClientError here
is raised as StorageError so the consensus engine can keep its previous
snapshot.
"""

import asyncio
import functools
import logging
import operator
from collections.abc import Mapping
from typing import Any

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError
from mypy_boto3_dynamodb.service_resource import DynamoDBServiceResource, Table

from table_order_service.errors import StorageError
from table_order_service.storage.gateway import ChangeType, StorageGateway, TableSchema

logger = logging.getLogger(__name__)


class DynamoDBGateway(StorageGateway):
    """Storage gateway backed by DynamoDB tables."""

    def __init__(
        self,
        dynamodb_resource: DynamoDBServiceResource,
        table_names: dict[str, str] | None = None,
        schemas: dict[str, TableSchema] | None = None,
    ) -> None:
        """Initialize gateway.

        Args:
            dynamodb_resource: Boto3 DynamoDB resource
            table_names: Physical table name per logical table (defaults to the logical name)
            schemas: Key layout per logical table
        """
        super().__init__(schemas)
        self.dynamodb = dynamodb_resource
        overrides = table_names or {}
        self.table_names = {name: overrides.get(name, name) for name in self.schemas}
        self.tables: dict[str, Table] = {
            name: dynamodb_resource.Table(physical) for name, physical in self.table_names.items()
        }

    def _table(self, table: str) -> Table:
        self.schema_for(table)
        return self.tables[table]

    async def upsert(
        self, table: str, key: Mapping[str, Any], record: Mapping[str, Any]
    ) -> dict[str, Any]:
        item = {**record, **key}
        self.schema_for(table).key_of(item)

        try:
            response = await asyncio.to_thread(
                self._table(table).put_item, Item=item, ReturnValues="ALL_OLD"
            )
        except ClientError as e:
            logger.error(f"Failed to upsert into {table}: {e}")
            raise StorageError(f"Failed to upsert into {table}: {e}") from e

        change_type = ChangeType.UPDATE if response.get("Attributes") else ChangeType.INSERT
        self._notify(table, change_type, dict(item))
        return item

    async def select(self, table: str, filters: Mapping[str, Any]) -> list[dict[str, Any]]:
        try:
            return await asyncio.to_thread(self._read_all, table, dict(filters))
        except ClientError as e:
            logger.error(f"Failed to read from {table}: {e}")
            raise StorageError(f"Failed to read from {table}: {e}") from e

    def _read_all(self, table: str, filters: dict[str, Any]) -> list[dict[str, Any]]:
        """Query on the partition key when the filter has it, otherwise scan.

        Follows LastEvaluatedKey until every page has been read.
        """
        schema = self.schema_for(table)
        dynamo_table = self._table(table)
        kwargs: dict[str, Any] = {}

        if schema.partition_key in filters:
            condition = Key(schema.partition_key).eq(filters.pop(schema.partition_key))
            if schema.sort_key is not None and schema.sort_key in filters:
                condition = condition & Key(schema.sort_key).eq(filters.pop(schema.sort_key))
            kwargs["KeyConditionExpression"] = condition
            read = dynamo_table.query
        else:
            read = dynamo_table.scan

        if filters:
            kwargs["FilterExpression"] = functools.reduce(
                operator.and_, [Attr(name).eq(value) for name, value in filters.items()]
            )

        items: list[dict[str, Any]] = []
        while True:
            response = read(**kwargs)
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    async def delete(self, table: str, filters: Mapping[str, Any]) -> int:
        schema = self.schema_for(table)

        if set(filters) == set(schema.key_fields):
            keys = [dict(filters)]
        else:
            keys = [schema.key_of(item) for item in await self.select(table, filters)]

        deleted = 0
        for key in keys:
            try:
                response = await asyncio.to_thread(
                    self._table(table).delete_item, Key=key, ReturnValues="ALL_OLD"
                )
            except ClientError as e:
                logger.error(f"Failed to delete from {table}: {e}")
                raise StorageError(f"Failed to delete from {table}: {e}") from e

            old_item = response.get("Attributes")
            if old_item:
                deleted += 1
                self._notify(table, ChangeType.DELETE, dict(old_item))

        return deleted

    async def insert_if_absent(
        self, table: str, key: Mapping[str, Any], record: Mapping[str, Any]
    ) -> bool:
        schema = self.schema_for(table)
        item = {**record, **key}
        schema.key_of(item)

        try:
            await asyncio.to_thread(
                self._table(table).put_item,
                Item=item,
                ConditionExpression=Attr(schema.partition_key).not_exists(),
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                return False
            logger.error(f"Failed conditional insert into {table}: {e}")
            raise StorageError(f"Failed conditional insert into {table}: {e}") from e

        self._notify(table, ChangeType.INSERT, dict(item))
        return True
