"""DynamoDB backend; version tags are emulated with a per-write version attribute."""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime
from decimal import Decimal
from functools import reduce
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

import boto3
from boto3.dynamodb.conditions import Attr, ConditionBase, ConditionExpressionBuilder, Key
from boto3.dynamodb.types import TypeSerializer
from botocore.config import Config
from botocore.exceptions import ClientError

from tablerepo.common.base_store import TableHandle, TableStore
from tablerepo.exception import (
    BatchItemException,
    ConflictException,
    FilterException,
    RecordNotFoundException,
)
from tablerepo.filters import EQUAL, And, Comparison, Filter, Not, Or, RawFilter
from tablerepo.types import (
    PARTITION_KEY,
    ROW_KEY,
    EntityData,
    OperationKind,
    RetryPolicy,
    StoredEntity,
    TableOperation,
)

logger = logging.getLogger(__name__)

RETURN_OLD_ON_CONDITION_FAILURE = {"ReturnValuesOnConditionCheckFailure": "ALL_OLD"}

ATTR_OPERATORS = {"eq": "eq", "ne": "ne", "gt": "gt", "ge": "gte", "lt": "lt", "le": "lte"}


class DynamodbTableHandle(TableHandle):

    def __init__(self, store: "DynamodbTableStore", name: str) -> None:
        super().__init__(name)
        self.store = store
        self.serializer = TypeSerializer()

    async def retrieve(self, partition_key: str, row_key: str, retry_policy: RetryPolicy) -> Optional[StoredEntity]:
        return await asyncio.to_thread(self.__retrieve, partition_key, row_key, retry_policy)

    async def execute(self, operation: TableOperation, retry_policy: RetryPolicy) -> None:
        await asyncio.to_thread(self.__execute, operation, retry_policy)

    async def execute_batch(self, operations: Sequence[TableOperation], retry_policy: RetryPolicy) -> None:
        await asyncio.to_thread(self.__execute_batch, operations, retry_policy)

    async def query(self, query_filter: Optional[Filter], retry_policy: RetryPolicy) -> List[StoredEntity]:
        return await asyncio.to_thread(self.__query, query_filter, retry_policy)

    def __table(self, retry_policy: RetryPolicy) -> Any:
        return self.store.resource(retry_policy).Table(self.name)

    def __retrieve(self, partition_key: str, row_key: str, retry_policy: RetryPolicy) -> Optional[StoredEntity]:
        response: Dict[str, Any] = self.__table(retry_policy).get_item(
            Key=self.__key(partition_key, row_key), ConsistentRead=True
        )
        item = response.get("Item")
        return self.__to_stored(item) if item else None

    def __execute(self, operation: TableOperation, retry_policy: RetryPolicy) -> None:
        table = self.__table(retry_policy)
        condition = self.__write_condition(operation)
        kwargs: Dict[str, Any] = {}
        if condition is not None:
            kwargs["ConditionExpression"] = condition
            kwargs.update(RETURN_OLD_ON_CONDITION_FAILURE)
        try:
            if operation.kind is OperationKind.DELETE:
                table.delete_item(Key=self.__key(operation.partition_key, operation.row_key), **kwargs)
            else:
                table.put_item(Item=self.__to_item(operation), **kwargs)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") != "ConditionalCheckFailedException":
                raise
            logger.debug("%s on %s failed its condition", operation.kind.value, self.name)
            identity = f"({operation.partition_key!r}, {operation.row_key!r})"
            # the old item only comes back when one exists
            if "Item" not in exc.response:
                raise RecordNotFoundException(f"{identity} not found in {self.name}") from exc
            raise ConflictException(
                f"{operation.kind.value} conflict on {identity}",
                error_code="ConditionalCheckFailedException",
            ) from exc

    def __execute_batch(self, operations: Sequence[TableOperation], retry_policy: RetryPolicy) -> None:
        client = self.store.client(retry_policy)
        items = [self.__to_transact_item(operation) for operation in operations]
        try:
            client.transact_write_items(TransactItems=items)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            partition_key = operations[0].partition_key if operations else None
            message = f"batch of {len(operations)} on partition {partition_key!r} failed: {code}"
            failed = [
                reason
                for reason in exc.response.get("CancellationReasons", [])
                if reason.get("Code") == "ConditionalCheckFailed"
            ]
            if any("Item" in reason for reason in failed):
                raise ConflictException(message, error_code="ConditionalCheckFailed") from exc
            if failed:
                raise RecordNotFoundException(message) from exc
            raise BatchItemException(message, error_code=code) from exc

    def __query(self, query_filter: Optional[Filter], retry_policy: RetryPolicy) -> List[StoredEntity]:
        table = self.__table(retry_policy)
        operation = table.scan
        kwargs: Dict[str, Any] = {}
        if query_filter is not None:
            conjuncts = query_filter.conjuncts()
            head, rest = conjuncts[0], conjuncts[1:]
            if self.__is_partition_equality(head) and not any(self.__references_keys(item) for item in rest):
                operation = table.query
                kwargs["KeyConditionExpression"] = Key(self.store.hash_key).eq(head.value)
                if rest:
                    kwargs["FilterExpression"] = self.__to_condition(reduce(And, rest))
            else:
                kwargs["FilterExpression"] = self.__to_condition(query_filter)
        response = operation(**kwargs)
        items = list(response.get("Items", []))
        while response.get("LastEvaluatedKey"):
            response = operation(ExclusiveStartKey=response["LastEvaluatedKey"], **kwargs)
            items.extend(response.get("Items", []))
        return [self.__to_stored(item) for item in items]

    def __write_condition(self, operation: TableOperation) -> Optional[ConditionBase]:
        hash_attribute = Attr(self.store.hash_key)
        if operation.kind is OperationKind.INSERT:
            return hash_attribute.not_exists()
        if operation.kind is OperationKind.REPLACE:
            if operation.is_conditional:
                return hash_attribute.exists() & Attr(self.store.version_attribute).eq(operation.etag)
            return hash_attribute.exists()
        if operation.kind is OperationKind.DELETE:
            if operation.is_conditional:
                return Attr(self.store.version_attribute).eq(operation.etag)
        return None

    def __to_transact_item(self, operation: TableOperation) -> Dict[str, Any]:
        body: Dict[str, Any] = {"TableName": self.name}
        if operation.kind is OperationKind.DELETE:
            body["Key"] = self.__serialize(self.__key(operation.partition_key, operation.row_key))
        else:
            body["Item"] = self.__serialize(self.__to_item(operation))
        condition = self.__write_condition(operation)
        if condition is not None:
            built = ConditionExpressionBuilder().build_expression(condition)
            body["ConditionExpression"] = built.condition_expression
            body["ExpressionAttributeNames"] = built.attribute_name_placeholders
            if built.attribute_value_placeholders:
                body["ExpressionAttributeValues"] = self.__serialize(built.attribute_value_placeholders)
            body.update(RETURN_OLD_ON_CONDITION_FAILURE)
        return {"Delete" if operation.kind is OperationKind.DELETE else "Put": body}

    def __to_condition(self, query_filter: Filter) -> ConditionBase:
        if isinstance(query_filter, Comparison):
            attribute = Attr(self.__attribute_name(query_filter.field))
            return getattr(attribute, ATTR_OPERATORS[query_filter.operator])(to_dynamo_value(query_filter.value))
        if isinstance(query_filter, And):
            return self.__to_condition(query_filter.left) & self.__to_condition(query_filter.right)
        if isinstance(query_filter, Or):
            return self.__to_condition(query_filter.left) | self.__to_condition(query_filter.right)
        if isinstance(query_filter, Not):
            return ~self.__to_condition(query_filter.operand)
        if isinstance(query_filter, RawFilter):
            raise FilterException("raw OData fragments are not supported by the dynamodb store")
        raise FilterException(f"unsupported filter node: {type(query_filter).__name__}")

    def __is_partition_equality(self, query_filter: Filter) -> bool:
        return (
            isinstance(query_filter, Comparison)
            and query_filter.field == PARTITION_KEY
            and query_filter.operator == EQUAL
        )

    def __references_keys(self, query_filter: Filter) -> bool:
        if isinstance(query_filter, Comparison):
            return query_filter.field in (PARTITION_KEY, ROW_KEY)
        if isinstance(query_filter, (And, Or)):
            return self.__references_keys(query_filter.left) or self.__references_keys(query_filter.right)
        if isinstance(query_filter, Not):
            return self.__references_keys(query_filter.operand)
        return False

    def __attribute_name(self, name: str) -> str:
        if name == PARTITION_KEY:
            return self.store.hash_key
        if name == ROW_KEY:
            return self.store.range_key
        return name

    def __key(self, partition_key: str, row_key: str) -> Dict[str, str]:
        return {self.store.hash_key: partition_key, self.store.range_key: row_key}

    def __to_item(self, operation: TableOperation) -> EntityData:
        item: EntityData = {
            self.__attribute_name(key): to_dynamo_value(value)
            for key, value in operation.entity.items()
            if value is not None
        }
        item[self.store.version_attribute] = uuid4().hex
        return item

    def __to_stored(self, item: Dict[str, Any]) -> StoredEntity:
        data: EntityData = {}
        etag: Optional[str] = None
        for key, value in item.items():
            if key == self.store.version_attribute:
                etag = value
            elif key == self.store.hash_key:
                data[PARTITION_KEY] = value
            elif key == self.store.range_key:
                data[ROW_KEY] = value
            else:
                data[key] = from_dynamo_value(value)
        return StoredEntity(data=data, etag=etag)

    def __serialize(self, values: Dict[str, Any]) -> Dict[str, Any]:
        return {key: self.serializer.serialize(value) for key, value in values.items()}


class DynamodbTableStore(TableStore):
    """Maps the table abstraction onto a DynamoDB table keyed by hash and range key."""

    def __init__(self, **kwargs: Any) -> None:
        self.endpoint: Optional[str] = kwargs.get("endpoint")
        self.hash_key: str = kwargs.get("hash_key", PARTITION_KEY)
        self.range_key: str = kwargs.get("range_key", ROW_KEY)
        self.version_attribute: str = kwargs.get("version_attribute", "ETag")
        self.__lock = threading.Lock()
        self.__local = threading.local()
        self.__clients: Dict[int, Any] = {}

    def resource(self, retry_policy: RetryPolicy) -> Any:
        """Resource for the calling thread; boto3 resources must not be shared between threads."""

        resources: Dict[int, Any] = self.__local.__dict__.setdefault("resources", {})
        total_attempts = self.__total_attempts(retry_policy)
        if total_attempts not in resources:
            with self.__lock:
                resources[total_attempts] = boto3.resource(
                    "dynamodb", endpoint_url=self.endpoint, config=self.__config(total_attempts)
                )
        return resources[total_attempts]

    def client(self, retry_policy: RetryPolicy) -> Any:
        """Low-level client shared by all threads, for calls taking wire-format attribute values."""

        total_attempts = self.__total_attempts(retry_policy)
        with self.__lock:
            if total_attempts not in self.__clients:
                self.__clients[total_attempts] = boto3.client(
                    "dynamodb", endpoint_url=self.endpoint, config=self.__config(total_attempts)
                )
            return self.__clients[total_attempts]

    def __total_attempts(self, retry_policy: RetryPolicy) -> int:
        # botocore counts the initial request as an attempt
        return retry_policy.max_attempts + 1

    def __config(self, total_attempts: int) -> Config:
        return Config(retries={"total_max_attempts": total_attempts, "mode": "standard"})

    def get_table(self, name: str) -> DynamodbTableHandle:
        return DynamodbTableHandle(self, name)


def to_dynamo_value(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return [to_dynamo_value(item) for item in value]
    if isinstance(value, dict):
        return {key: to_dynamo_value(item) for key, item in value.items()}
    return value


def from_dynamo_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, list):
        return [from_dynamo_value(item) for item in value]
    if isinstance(value, dict):
        return {key: from_dynamo_value(item) for key, item in value.items()}
    return value
