from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple, Type, TypeVar

from .entity_data import EntityData

PARTITION_KEY = "PartitionKey"
ROW_KEY = "RowKey"
WILDCARD_ETAG = "*"

KEY_FIELDS: Dict[str, str] = {"partition_key": PARTITION_KEY, "row_key": ROW_KEY}
METADATA_FIELDS = ("etag", "timestamp")

R = TypeVar("R", bound="TableRecord")


@dataclass
class TableRecord:
    """Base for typed records addressed by partition key and row key.

    Subclasses declare their own dataclass fields, all of which must have
    defaults so that ``from_entity`` can build partial records.
    """

    partition_key: str = ""
    row_key: str = ""
    etag: Optional[str] = field(default=None, compare=False)
    timestamp: Optional[datetime] = field(default=None, compare=False)

    @property
    def identity(self) -> Tuple[str, str]:
        return self.partition_key, self.row_key

    def to_entity(self) -> EntityData:
        entity: EntityData = {}
        for record_field in fields(self):
            if record_field.name in METADATA_FIELDS:
                continue
            value = getattr(self, record_field.name)
            if value is None:
                continue
            entity[KEY_FIELDS.get(record_field.name, record_field.name)] = value
        return entity

    @classmethod
    def from_entity(
        cls: Type[R],
        data: Mapping[str, Any],
        etag: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> R:
        stored_names = {KEY_FIELDS.get(f.name, f.name): f.name for f in fields(cls) if f.init}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = stored_names.get(key)
            if name is not None and name not in METADATA_FIELDS:
                kwargs[name] = value
        return cls(etag=etag, timestamp=timestamp, **kwargs)


@dataclass(frozen=True)
class StoredEntity:
    """Raw entity as returned by a store, with its concurrency metadata."""

    data: EntityData
    etag: Optional[str] = None
    timestamp: Optional[datetime] = None
