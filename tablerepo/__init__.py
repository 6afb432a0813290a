"""Public interface for the tablerepo package."""

import os
from typing import Any

from .common.base_store import TableStore
from .exception import (
    BatchItemException,
    ConfigurationException,
    ConflictException,
    FilterException,
    RecordException,
    RecordNotFoundException,
    TableRepositoryException,
)
from .filters import RawFilter, field
from .repository import TableRepository
from .types import WILDCARD_ETAG, RetryPolicy, TableRecord


def store(**kwargs: Any) -> TableStore:
    """Build a store for ``engine`` ("azure" or "dynamodb"), falling back to environment settings."""

    engine = kwargs.pop("engine", "azure")
    if engine == "azure":
        from .stores.azure import AzureTableStore

        kwargs.setdefault("connection_string", os.environ.get("AZURE_STORAGE_CONNECTION_STRING"))
        kwargs.setdefault("endpoint", os.environ.get("AZURE_TABLES_ENDPOINT"))
        return AzureTableStore(**kwargs)
    if engine == "dynamodb":
        from .stores.dynamodb import DynamodbTableStore

        kwargs.setdefault("endpoint", os.environ.get("DYNAMODB_ENDPOINT"))
        return DynamodbTableStore(**kwargs)
    raise ConfigurationException(f"engine {engine} not supported; use 'azure' or 'dynamodb'")


def repository(**kwargs: Any) -> TableRepository:
    """Factory helper building a store and a repository for ``table`` in one call."""

    table = kwargs.pop("table", None)
    if not table:
        raise ConfigurationException("table is required")
    record_type = kwargs.pop("record_type", TableRecord)
    retry_policy = kwargs.pop("retry_policy", None)
    return TableRepository(store(**kwargs), table, record_type, retry_policy=retry_policy)


__all__ = [
    "BatchItemException",
    "ConfigurationException",
    "ConflictException",
    "FilterException",
    "RawFilter",
    "RecordException",
    "RecordNotFoundException",
    "RetryPolicy",
    "TableRecord",
    "TableRepository",
    "TableRepositoryException",
    "WILDCARD_ETAG",
    "field",
    "repository",
    "store",
]
