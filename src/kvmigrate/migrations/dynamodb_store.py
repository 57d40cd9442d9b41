"""
DynamoDB implementation of the key-value store.

The changelog table has a single string hash key named after the configured
partition key. Conditional writes (`attribute_not_exists`) give the
create-if-absent guarantee the process lock depends on, and every read uses
`ConsistentRead=True` so a record written by another process is seen
immediately.

boto3 is synchronous; each call runs in a worker thread via
`asyncio.to_thread` so the event loop is never blocked.
"""

import asyncio
from typing import Any, Optional

import boto3
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError

from kvmigrate.config.logging_config import get_logger
from kvmigrate.migrations.exceptions import MigrationConnectionError
from kvmigrate.migrations.store import Item, KeyValueStore

log = get_logger(__name__)

_CONDITION_FAILED = "ConditionalCheckFailedException"
_NOT_FOUND = "ResourceNotFoundException"


class DynamoDBKeyValueStore(KeyValueStore):
    """Key-value store over a DynamoDB table."""

    def __init__(self, client: Any, table_name: str, partition_key_name: str = "pk"):
        """Initialize with a boto3 DynamoDB client.

        Args:
            client: boto3 `dynamodb` client (low-level API).
            table_name: Name of the changelog table.
            partition_key_name: Name of the hash key attribute.
        """
        self._client = client
        self._table = table_name
        self._pk = partition_key_name
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    @classmethod
    def from_settings(
        cls,
        table_name: str,
        partition_key_name: str = "pk",
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
    ) -> "DynamoDBKeyValueStore":
        """Create a store with a fresh boto3 client.

        Args:
            table_name: Name of the changelog table.
            partition_key_name: Name of the hash key attribute.
            region: AWS region name. Defaults to the boto3 session default.
            endpoint_url: Custom endpoint (e.g. DynamoDB Local).
        """
        session = boto3.session.Session()
        client = session.client(service_name="dynamodb", region_name=region, endpoint_url=endpoint_url)
        return cls(client, table_name, partition_key_name)

    @property
    def client(self) -> Any:
        """The underlying boto3 client."""
        return self._client

    def _serialize(self, item: Item) -> dict[str, Any]:
        return {k: self._serializer.serialize(v) for k, v in item.items()}

    def _deserialize(self, raw: dict[str, Any]) -> Item:
        return {k: self._deserializer.deserialize(v) for k, v in raw.items() if k != self._pk}

    def _key(self, key: str) -> dict[str, Any]:
        return {self._pk: {"S": key}}

    async def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        method = getattr(self._client, operation)
        try:
            return await asyncio.to_thread(method, **kwargs)
        except ClientError:
            raise
        except BotoCoreError as e:
            raise MigrationConnectionError(f"DynamoDB {operation} on {self._table} failed: {e}") from e

    async def ensure_table(self) -> None:
        try:
            await self._call("describe_table", TableName=self._table)
            return
        except ClientError as e:
            if e.response["Error"]["Code"] != _NOT_FOUND:
                raise MigrationConnectionError(f"Cannot describe table {self._table}: {e}") from e

        log.info(f"Creating DynamoDB table {self._table}")
        try:
            await self._call(
                "create_table",
                TableName=self._table,
                KeySchema=[{"AttributeName": self._pk, "KeyType": "HASH"}],
                AttributeDefinitions=[{"AttributeName": self._pk, "AttributeType": "S"}],
                BillingMode="PAY_PER_REQUEST",
            )
        except ClientError as e:
            # Another process may have created it in the meantime
            if e.response["Error"]["Code"] != "ResourceInUseException":
                raise MigrationConnectionError(f"Cannot create table {self._table}: {e}") from e

        waiter = self._client.get_waiter("table_exists")
        try:
            await asyncio.to_thread(waiter.wait, TableName=self._table)
        except (BotoCoreError, ClientError) as e:
            raise MigrationConnectionError(f"Table {self._table} did not become active: {e}") from e

    async def get_item(self, key: str) -> Item | None:
        try:
            response = await self._call(
                "get_item",
                TableName=self._table,
                Key=self._key(key),
                ConsistentRead=True,
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == _NOT_FOUND:
                return None
            raise MigrationConnectionError(f"Cannot read {key} from {self._table}: {e}") from e
        raw = response.get("Item")
        if raw is None:
            return None
        return self._deserialize(raw)

    async def put_item_if_absent(self, key: str, item: Item) -> bool:
        record = self._serialize(item)
        record.update(self._key(key))
        try:
            await self._call(
                "put_item",
                TableName=self._table,
                Item=record,
                ConditionExpression="attribute_not_exists(#pk)",
                ExpressionAttributeNames={"#pk": self._pk},
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == _CONDITION_FAILED:
                return False
            raise MigrationConnectionError(f"Cannot write {key} to {self._table}: {e}") from e
        return True

    async def delete_item(self, key: str, expected: Item | None = None) -> bool:
        names = {"#pk": self._pk}
        values: dict[str, Any] = {}
        conditions = ["attribute_exists(#pk)"]
        for index, (attribute, value) in enumerate((expected or {}).items()):
            names[f"#a{index}"] = attribute
            values[f":v{index}"] = self._serializer.serialize(value)
            conditions.append(f"#a{index} = :v{index}")

        kwargs: dict[str, Any] = {
            "TableName": self._table,
            "Key": self._key(key),
            "ConditionExpression": " AND ".join(conditions),
            "ExpressionAttributeNames": names,
        }
        if values:
            kwargs["ExpressionAttributeValues"] = values

        try:
            await self._call("delete_item", **kwargs)
        except ClientError as e:
            if e.response["Error"]["Code"] in (_CONDITION_FAILED, _NOT_FOUND):
                return False
            raise MigrationConnectionError(f"Cannot delete {key} from {self._table}: {e}") from e
        return True

    async def close(self) -> None:
        await asyncio.to_thread(self._client.close)

    @property
    def backend(self) -> str:
        return "dynamodb"
