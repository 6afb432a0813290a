"""Grouping of records into same-partition batches sized for the service."""

from typing import Dict, Iterable, List, Optional, Sequence

from tablerepo.types import OperationKind, TableOperation, TableRecord

from .exception import ConfigurationException

MAX_BATCH_SIZE = 100


def effective_batch_size(requested: Optional[int] = None) -> int:
    if requested is None:
        return MAX_BATCH_SIZE
    if requested < 1:
        raise ConfigurationException(f"batch_size must be a positive integer, got {requested}")
    return min(requested, MAX_BATCH_SIZE)


def group_by_partition(
    records: Iterable[TableRecord],
    kind: OperationKind,
    ignore_version: bool = False,
) -> Dict[str, List[TableOperation]]:
    """Bucket one operation per record under its partition key, keeping arrival order."""

    groups: Dict[str, List[TableOperation]] = {}
    for record in records:
        operation = TableOperation.for_record(kind, record, ignore_version=ignore_version)
        groups.setdefault(record.partition_key, []).append(operation)
    return groups


def chunk_operations(operations: Sequence[TableOperation], size: int) -> List[List[TableOperation]]:
    if len(operations) <= size:
        return [list(operations)]
    return [list(operations[pos: pos + size]) for pos in range(0, len(operations), size)]


def build_chunks(groups: Dict[str, List[TableOperation]], size: int) -> List[List[TableOperation]]:
    chunks: List[List[TableOperation]] = []
    for operations in groups.values():
        if operations:
            chunks.extend(chunk_operations(operations, size))
    return chunks
