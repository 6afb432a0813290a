from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..exception import RecordException
from .entity_data import EntityData
from .record import PARTITION_KEY, ROW_KEY, WILDCARD_ETAG, TableRecord


class OperationKind(str, Enum):
    INSERT = "insert"
    INSERT_OR_REPLACE = "insert_or_replace"
    REPLACE = "replace"
    DELETE = "delete"


@dataclass(frozen=True)
class TableOperation:
    """A pending write against one entity.

    The etag carried here is what gets sent to the store; building an
    operation never touches the record it came from.
    """

    kind: OperationKind
    partition_key: str
    row_key: str
    entity: EntityData
    etag: Optional[str] = None

    @property
    def ignores_version(self) -> bool:
        return self.etag == WILDCARD_ETAG

    @property
    def is_conditional(self) -> bool:
        return self.etag is not None and self.etag != WILDCARD_ETAG

    @classmethod
    def for_record(cls, kind: OperationKind, record: TableRecord, ignore_version: bool = False) -> "TableOperation":
        etag = WILDCARD_ETAG if ignore_version else record.etag
        if kind is OperationKind.REPLACE and etag is None:
            raise RecordException(
                f"replace of ({record.partition_key!r}, {record.row_key!r}) requires a version tag; "
                f"use '{WILDCARD_ETAG}' to ignore the stored version"
            )
        if kind is OperationKind.DELETE:
            entity: EntityData = {PARTITION_KEY: record.partition_key, ROW_KEY: record.row_key}
        else:
            entity = record.to_entity()
        return cls(kind, record.partition_key, record.row_key, entity, etag)

    @classmethod
    def delete(cls, partition_key: str, row_key: str, etag: Optional[str] = None) -> "TableOperation":
        return cls(
            OperationKind.DELETE,
            partition_key,
            row_key,
            {PARTITION_KEY: partition_key, ROW_KEY: row_key},
            etag,
        )
