"""Contract every table service backend implements."""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from tablerepo.filters import Filter
from tablerepo.types import RetryPolicy, StoredEntity, TableOperation


class TableHandle(ABC):
    """Lightweight reference to one named table; holds no live connection of its own."""

    def __init__(self, name: str) -> None:
        self.name = name

    @abstractmethod
    async def retrieve(self, partition_key: str, row_key: str, retry_policy: RetryPolicy) -> Optional[StoredEntity]:
        """Return the stored entity, or ``None`` when no entity has that identity."""

    @abstractmethod
    async def execute(self, operation: TableOperation, retry_policy: RetryPolicy) -> None:
        ...

    @abstractmethod
    async def execute_batch(self, operations: Sequence[TableOperation], retry_policy: RetryPolicy) -> None:
        """Apply same-partition operations atomically, in the given order."""

    @abstractmethod
    async def query(self, query_filter: Optional[Filter], retry_policy: RetryPolicy) -> List[StoredEntity]:
        """Run the filter and return every matching entity, fully materialized."""


class TableStore(ABC):
    @abstractmethod
    def get_table(self, name: str) -> TableHandle:
        ...
