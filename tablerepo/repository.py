"""Typed repository over a partitioned table exposing point, scan and batch operations."""

import asyncio
import logging
from typing import Generic, Iterable, List, Optional, Type, TypeVar, Union

from tablerepo.common.base_store import TableHandle, TableStore
from tablerepo.filters import Filter, RawFilter, field
from tablerepo.types import (
    PARTITION_KEY,
    WILDCARD_ETAG,
    OperationKind,
    RetryPolicy,
    StoredEntity,
    TableOperation,
    TableRecord,
)

from .batching import build_chunks, effective_batch_size, group_by_partition
from .exception import ConfigurationException

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=TableRecord)


class TableRepository(Generic[T]):
    """CRUD and batch access to one table, returning instances of ``record_type``.

    The repository is stateless apart from the lazily resolved table handle,
    which is read-only once resolved and safe to share between concurrent calls.
    Every store call carries ``retry_policy``; retrying itself is left to the SDK.
    """

    def __init__(
        self,
        store: TableStore,
        table_name: str,
        record_type: Type[T],
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        if store is None:
            raise ConfigurationException("store is required")
        if not table_name or not table_name.strip():
            raise ConfigurationException("table_name is required")
        self.store = store
        self.table_name = table_name
        self.record_type = record_type
        self.retry_policy = retry_policy or RetryPolicy()
        self._table: Optional[TableHandle] = None

    @property
    def table(self) -> TableHandle:
        if self._table is None:
            self._table = self.store.get_table(self.table_name)
        return self._table

    async def get(self, partition_key: str, row_key: str) -> Optional[T]:
        stored = await self.table.retrieve(partition_key, row_key, self.retry_policy)
        return self.__to_record(stored) if stored is not None else None

    async def find(self, condition: Filter) -> List[T]:
        """Return every record matching ``condition``.

        Results are loaded fully into memory before returning, so the list can be
        indexed and iterated repeatedly. Unscoped filters scan the whole table;
        bounding them is up to the caller.
        """
        stored = await self.table.query(condition, self.retry_policy)
        return [self.__to_record(entity) for entity in stored]

    async def find_in_partition(self, partition_key: str, condition: Union[str, Filter, None] = None) -> List[T]:
        query_filter: Filter = field(PARTITION_KEY).eq(partition_key)
        if isinstance(condition, str):
            query_filter = query_filter & RawFilter(condition)
        elif condition is not None:
            query_filter = query_filter & condition
        stored = await self.table.query(query_filter, self.retry_policy)
        return [self.__to_record(entity) for entity in stored]

    async def add(self, record: T) -> None:
        await self.__execute(TableOperation.for_record(OperationKind.INSERT, record))

    async def add_or_update(self, record: T) -> None:
        await self.__execute(TableOperation.for_record(OperationKind.INSERT_OR_REPLACE, record))

    async def update(self, record: T) -> None:
        await self.__execute(TableOperation.for_record(OperationKind.REPLACE, record))

    async def delete(
        self,
        partition_key: str,
        row_key: str,
        ignore_version: bool = False,
        etag: Optional[str] = None,
    ) -> None:
        if ignore_version:
            operation = TableOperation.delete(partition_key, row_key, etag=WILDCARD_ETAG)
        else:
            operation = TableOperation.delete(partition_key, row_key, etag=etag)
        await self.__execute(operation)

    async def add_batch(
        self,
        records: Iterable[T],
        update_if_exists: bool = False,
        batch_size: Optional[int] = None,
    ) -> None:
        kind = OperationKind.INSERT_OR_REPLACE if update_if_exists else OperationKind.INSERT
        await self.__execute_batches(records, kind, batch_size=batch_size)

    async def update_batch(
        self,
        records: Iterable[T],
        ignore_version: bool = False,
        batch_size: Optional[int] = None,
    ) -> None:
        await self.__execute_batches(records, OperationKind.REPLACE, ignore_version, batch_size)

    async def delete_batch(
        self,
        records: Iterable[T],
        ignore_version: bool = False,
        batch_size: Optional[int] = None,
    ) -> None:
        await self.__execute_batches(records, OperationKind.DELETE, ignore_version, batch_size)

    async def delete_where(self, condition: Filter) -> None:
        """Scan for ``condition`` then batch-delete the matches.

        Two round trips with no isolation between them: records changed after
        the scan are deleted using the version tags the scan returned.
        """
        await self.delete_batch(await self.find(condition))

    async def __execute(self, operation: TableOperation) -> None:
        await self.table.execute(operation, self.retry_policy)

    async def __execute_batches(
        self,
        records: Iterable[T],
        kind: OperationKind,
        ignore_version: bool = False,
        batch_size: Optional[int] = None,
    ) -> None:
        size = effective_batch_size(batch_size)
        groups = group_by_partition(records, kind, ignore_version=ignore_version)
        if not groups:
            return
        chunks = build_chunks(groups, size)
        logger.debug(
            "%s on %s: %d partition(s) in %d chunk(s) of up to %d",
            kind.value,
            self.table_name,
            len(groups),
            len(chunks),
            size,
        )
        results = await asyncio.gather(
            *(self.table.execute_batch(chunk, self.retry_policy) for chunk in chunks),
            return_exceptions=True,
        )
        failures = [result for result in results if isinstance(result, BaseException)]
        if not failures:
            return
        for failure in failures[1:]:
            logger.warning("%s on %s: additional chunk failure: %r", kind.value, self.table_name, failure)
        logger.warning(
            "%s on %s: %d of %d chunk(s) failed", kind.value, self.table_name, len(failures), len(chunks)
        )
        raise failures[0]

    def __to_record(self, stored: StoredEntity) -> T:
        return self.record_type.from_entity(stored.data, etag=stored.etag, timestamp=stored.timestamp)
