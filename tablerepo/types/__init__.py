"""Type exports for tablerepo."""

from .entity_data import EntityData
from .operation import OperationKind, TableOperation
from .record import PARTITION_KEY, ROW_KEY, WILDCARD_ETAG, StoredEntity, TableRecord
from .retry_policy import RetryPolicy

__all__ = [
    "EntityData",
    "OperationKind",
    "PARTITION_KEY",
    "ROW_KEY",
    "RetryPolicy",
    "StoredEntity",
    "TableOperation",
    "TableRecord",
    "WILDCARD_ETAG",
]
