"""Azure Table Storage backend built on the async azure-data-tables client."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from azure.core import MatchConditions
from azure.core.exceptions import (
    ResourceExistsError,
    ResourceModifiedError,
    ResourceNotFoundError,
)
from azure.core.pipeline.policies import RetryMode
from azure.data.tables import TableTransactionError, UpdateMode
from azure.data.tables.aio import TableClient, TableServiceClient

from tablerepo.common.base_store import TableHandle, TableStore
from tablerepo.exception import (
    BatchItemException,
    ConfigurationException,
    ConflictException,
    RecordNotFoundException,
)
from tablerepo.filters import Filter
from tablerepo.types import EntityData, OperationKind, RetryPolicy, StoredEntity, TableOperation

logger = logging.getLogger(__name__)

CONFLICT_CODES = frozenset({"EntityAlreadyExists", "UpdateConditionNotSatisfied", "ConditionNotMet"})
NOT_FOUND_CODES = frozenset({"ResourceNotFound", "EntityNotFound", "TableNotFound"})


def retry_options(policy: RetryPolicy) -> Dict[str, Any]:
    """Per-call azure-core retry settings; the exponential mode is set on the service client."""

    return {"retry_total": policy.max_attempts, "retry_backoff_factor": policy.base_delay}


class AzureTableHandle(TableHandle):

    def __init__(self, client: TableClient) -> None:
        super().__init__(client.table_name)
        self.client = client

    async def retrieve(self, partition_key: str, row_key: str, retry_policy: RetryPolicy) -> Optional[StoredEntity]:
        try:
            entity = await self.client.get_entity(
                partition_key=partition_key, row_key=row_key, **retry_options(retry_policy)
            )
        except ResourceNotFoundError:
            return None
        return self.__to_stored(entity)

    async def execute(self, operation: TableOperation, retry_policy: RetryPolicy) -> None:
        options = retry_options(retry_policy)
        try:
            if operation.kind is OperationKind.INSERT:
                await self.client.create_entity(entity=self.__payload(operation), **options)
            elif operation.kind is OperationKind.INSERT_OR_REPLACE:
                await self.client.upsert_entity(entity=self.__payload(operation), mode=UpdateMode.REPLACE, **options)
            elif operation.kind is OperationKind.REPLACE:
                await self.client.update_entity(
                    entity=self.__payload(operation),
                    mode=UpdateMode.REPLACE,
                    **self.__match_options(operation),
                    **options,
                )
            else:
                await self.client.delete_entity(
                    partition_key=operation.partition_key,
                    row_key=operation.row_key,
                    **self.__match_options(operation),
                    **options,
                )
        except (ResourceExistsError, ResourceModifiedError) as exc:
            logger.debug("%s on %s rejected: %s", operation.kind.value, self.name, exc)
            raise ConflictException(
                f"{operation.kind.value} conflict on ({operation.partition_key!r}, {operation.row_key!r})",
                error_code=getattr(exc, "error_code", None),
            ) from exc
        except ResourceNotFoundError as exc:
            raise RecordNotFoundException(
                f"({operation.partition_key!r}, {operation.row_key!r}) not found in {self.name}"
            ) from exc

    async def execute_batch(self, operations: Sequence[TableOperation], retry_policy: RetryPolicy) -> None:
        actions = [self.__to_transaction_action(operation) for operation in operations]
        try:
            await self.client.submit_transaction(actions, **retry_options(retry_policy))
        except TableTransactionError as exc:
            error_code = getattr(exc, "error_code", None)
            partition_key = operations[0].partition_key if operations else None
            logger.debug("batch on %s partition %r failed with %s", self.name, partition_key, error_code)
            message = f"batch of {len(operations)} on partition {partition_key!r} failed: {error_code}"
            if error_code in CONFLICT_CODES:
                raise ConflictException(message, error_code=error_code) from exc
            if error_code in NOT_FOUND_CODES:
                raise RecordNotFoundException(message) from exc
            raise BatchItemException(message, error_code=error_code) from exc

    async def query(self, query_filter: Optional[Filter], retry_policy: RetryPolicy) -> List[StoredEntity]:
        options = retry_options(retry_policy)
        if query_filter is None:
            pages = self.client.list_entities(**options)
        else:
            pages = self.client.query_entities(query_filter=query_filter.to_odata(), **options)
        return [self.__to_stored(entity) async for entity in pages]

    def __to_transaction_action(self, operation: TableOperation) -> Tuple[Any, ...]:
        payload = self.__payload(operation)
        if operation.kind is OperationKind.INSERT:
            return ("create", payload)
        if operation.kind is OperationKind.INSERT_OR_REPLACE:
            return ("upsert", payload, {"mode": UpdateMode.REPLACE})
        if operation.kind is OperationKind.REPLACE:
            return ("update", payload, {"mode": UpdateMode.REPLACE, **self.__match_options(operation)})
        return ("delete", payload, self.__match_options(operation))

    def __match_options(self, operation: TableOperation) -> Dict[str, Any]:
        if operation.is_conditional:
            return {"etag": operation.etag, "match_condition": MatchConditions.IfNotModified}
        return {"match_condition": MatchConditions.Unconditionally}

    def __payload(self, operation: TableOperation) -> EntityData:
        return {key: value for key, value in operation.entity.items() if value is not None}

    def __to_stored(self, entity: Any) -> StoredEntity:
        metadata = getattr(entity, "metadata", None) or {}
        return StoredEntity(data=dict(entity), etag=metadata.get("etag"), timestamp=metadata.get("timestamp"))


class AzureTableStore(TableStore):
    """Resolves table handles from one shared service client."""

    def __init__(self, **kwargs: Any) -> None:
        connection_string: Optional[str] = kwargs.get("connection_string")
        endpoint: Optional[str] = kwargs.get("endpoint")
        if connection_string:
            self.service = TableServiceClient.from_connection_string(
                conn_str=connection_string, retry_mode=RetryMode.Exponential
            )
        elif endpoint:
            self.service = TableServiceClient(
                endpoint=endpoint, credential=kwargs.get("credential"), retry_mode=RetryMode.Exponential
            )
        else:
            raise ConfigurationException("azure store requires connection_string or endpoint")

    def get_table(self, name: str) -> AzureTableHandle:
        return AzureTableHandle(self.service.get_table_client(table_name=name))

    async def close(self) -> None:
        await self.service.close()

    async def __aenter__(self) -> "AzureTableStore":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
