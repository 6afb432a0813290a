"""Unit tests for the table repository against an in-memory table handle."""

from __future__ import annotations

import pytest

import tablerepo
from tablerepo import TableRepository, field
from tablerepo.exception import (
    BatchItemException,
    ConfigurationException,
    ConflictException,
    RecordException,
)
from tablerepo.filters import RawFilter
from tablerepo.types import WILDCARD_ETAG, RetryPolicy

from tests.unit.mocks import Customer, StubStore, StubTableHandle, build_test_record


def _create_repository(handle: StubTableHandle, **overrides) -> TableRepository[Customer]:
    params = {"table_name": "customers", "record_type": Customer}
    params.update(overrides)
    return TableRepository(StubStore(handle), **params)


def test_constructor_requires_a_store() -> None:
    with pytest.raises(ConfigurationException):
        TableRepository(None, "customers", Customer)  # type: ignore[arg-type]


@pytest.mark.parametrize("table_name", ["", "   ", None])
def test_constructor_requires_a_table_name(table_name) -> None:
    store = StubStore()
    with pytest.raises(ConfigurationException):
        TableRepository(store, table_name, Customer)  # type: ignore[arg-type]
    assert store.resolved == []


def test_factory_rejects_unknown_engine() -> None:
    with pytest.raises(ConfigurationException):
        tablerepo.repository(engine="cassandra", table="customers")


def test_factory_requires_table() -> None:
    with pytest.raises(ConfigurationException):
        tablerepo.repository(engine="dynamodb")


async def test_table_handle_is_resolved_lazily_and_cached() -> None:
    store = StubStore()
    repository = TableRepository(store, "customers", Customer)
    assert store.resolved == []

    await repository.get("p", "r")
    await repository.get("p", "r")

    assert store.resolved == ["customers"]


async def test_get_missing_record_returns_none() -> None:
    repository = _create_repository(StubTableHandle())

    assert await repository.get("tenant-a", "missing") is None


async def test_get_returns_typed_record_with_version_tag() -> None:
    handle = StubTableHandle()
    etag = handle.seed(build_test_record(visits=7))
    repository = _create_repository(handle)

    record = await repository.get("tenant-a", "abc123")

    assert isinstance(record, Customer)
    assert record.visits == 7
    assert record.email == "abc123@example.com"
    assert record.etag == etag


async def test_add_conflicts_on_existing_identity() -> None:
    handle = StubTableHandle()
    repository = _create_repository(handle)
    await repository.add(build_test_record())

    with pytest.raises(ConflictException):
        await repository.add(build_test_record())


async def test_add_or_update_overwrites_without_version_check() -> None:
    handle = StubTableHandle()
    handle.seed(build_test_record(visits=1))
    repository = _create_repository(handle)

    await repository.add_or_update(build_test_record(visits=2))

    assert (await repository.get("tenant-a", "abc123")).visits == 2


async def test_update_with_stale_version_tag_conflicts() -> None:
    handle = StubTableHandle()
    handle.seed(build_test_record())
    repository = _create_repository(handle)
    record = await repository.get("tenant-a", "abc123")
    await repository.add_or_update(build_test_record(visits=5))

    record.visits = 9
    with pytest.raises(ConflictException):
        await repository.update(record)


async def test_update_with_wildcard_tag_ignores_server_version() -> None:
    handle = StubTableHandle()
    handle.seed(build_test_record())
    repository = _create_repository(handle)

    await repository.update(build_test_record(visits=9, etag=WILDCARD_ETAG))

    assert (await repository.get("tenant-a", "abc123")).visits == 9


async def test_update_without_version_tag_fails_before_calling_the_store() -> None:
    handle = StubTableHandle()
    repository = _create_repository(handle)

    with pytest.raises(RecordException):
        await repository.update(build_test_record())
    assert handle.execute_calls == []


async def test_delete_ignoring_version_sends_wildcard() -> None:
    handle = StubTableHandle()
    handle.seed(build_test_record())
    repository = _create_repository(handle)

    await repository.delete("tenant-a", "abc123", ignore_version=True)

    operation, _ = handle.execute_calls[-1]
    assert operation.etag == WILDCARD_ETAG
    assert await repository.get("tenant-a", "abc123") is None


async def test_delete_with_stale_version_tag_conflicts() -> None:
    handle = StubTableHandle()
    handle.seed(build_test_record())
    repository = _create_repository(handle)

    with pytest.raises(ConflictException):
        await repository.delete("tenant-a", "abc123", etag="W/\"stale\"")


async def test_every_store_call_carries_the_retry_policy() -> None:
    handle = StubTableHandle()
    policy = RetryPolicy(base_delay=1.0, max_attempts=2)
    repository = _create_repository(handle, retry_policy=policy)

    await repository.add(build_test_record())
    await repository.get("tenant-a", "abc123")
    await repository.find(field("visits").ge(0))
    await repository.add_batch([build_test_record(row_key="other")])

    assert handle.retry_policies == [policy] * 4


def test_default_retry_policy_is_five_seconds_four_attempts() -> None:
    repository = _create_repository(StubTableHandle())

    assert repository.retry_policy == RetryPolicy(base_delay=5.0, max_attempts=4)


async def test_empty_batch_makes_no_store_calls() -> None:
    handle = StubTableHandle()
    repository = _create_repository(handle)

    await repository.add_batch([])
    await repository.update_batch(iter(()))
    await repository.delete_batch([])

    assert handle.batch_calls == []


async def test_batch_insert_chunks_each_partition() -> None:
    handle = StubTableHandle()
    repository = _create_repository(handle)
    records = [build_test_record("p1", f"r{index:03d}") for index in range(250)]
    records += [build_test_record("p2", f"r{index:03d}") for index in range(10)]

    await repository.add_batch(records)

    assert sorted(len(chunk) for chunk in handle.batch_calls) == [10, 50, 100, 100]
    assert len(handle.entities) == 260


async def test_batch_chunks_are_submitted_concurrently() -> None:
    handle = StubTableHandle()
    repository = _create_repository(handle)
    records = [
        build_test_record("P1", "R1"),
        build_test_record("P1", "R2"),
        build_test_record("P2", "R1"),
    ]

    await repository.add_batch(records, batch_size=1)

    assert len(handle.batch_calls) == 3
    assert handle.max_in_flight == 3


async def test_requested_batch_size_above_maximum_is_clamped() -> None:
    handle = StubTableHandle()
    repository = _create_repository(handle)

    await repository.add_batch([build_test_record("p1", f"r{index:03d}") for index in range(150)], batch_size=500)

    assert [len(chunk) for chunk in handle.batch_calls] == [100, 50]


async def test_batch_upsert_never_conflicts_on_existing_records() -> None:
    handle = StubTableHandle()
    handle.seed(build_test_record(visits=1))
    repository = _create_repository(handle)

    await repository.add_batch([build_test_record(visits=3)], update_if_exists=True)

    assert (await repository.get("tenant-a", "abc123")).visits == 3


async def test_batch_insert_conflicts_on_existing_records() -> None:
    handle = StubTableHandle()
    handle.seed(build_test_record())
    repository = _create_repository(handle)

    with pytest.raises(ConflictException):
        await repository.add_batch([build_test_record()])


async def test_failed_chunk_does_not_stop_other_partitions() -> None:
    handle = StubTableHandle()
    handle.fail_partitions["p1"] = BatchItemException("boom")
    repository = _create_repository(handle)

    with pytest.raises(BatchItemException):
        await repository.add_batch([build_test_record("p1", "a"), build_test_record("p2", "b")])

    assert ("p2", "b") in handle.entities
    assert ("p1", "a") not in handle.entities
    assert len(handle.batch_calls) == 2


async def test_first_failure_in_submission_order_is_raised() -> None:
    handle = StubTableHandle()
    first, second = BatchItemException("first"), BatchItemException("second")
    handle.fail_partitions.update({"p1": first, "p2": second})
    repository = _create_repository(handle)

    with pytest.raises(BatchItemException) as raised:
        await repository.delete_batch([build_test_record("p1", "a"), build_test_record("p2", "b")])

    assert raised.value is first


async def test_update_batch_ignoring_version_leaves_caller_records_untouched() -> None:
    handle = StubTableHandle()
    handle.seed(build_test_record())
    repository = _create_repository(handle)
    record = build_test_record(visits=4, etag="W/\"old\"")

    await repository.update_batch([record], ignore_version=True)

    assert handle.batch_calls[0][0].etag == WILDCARD_ETAG
    assert record.etag == "W/\"old\""
    assert (await repository.get("tenant-a", "abc123")).visits == 4


async def test_find_materializes_matches_into_a_list() -> None:
    handle = StubTableHandle()
    for index in range(5):
        handle.seed(build_test_record("p1", f"r{index}", visits=index))
    repository = _create_repository(handle)

    found = await repository.find(field("visits").ge(3))

    assert isinstance(found, list)
    assert sorted(record.row_key for record in found) == ["r3", "r4"]
    assert [record.row_key for record in found] == [record.row_key for record in found]


async def test_find_in_partition_ands_partition_equality_with_raw_fragment() -> None:
    handle = StubTableHandle()
    repository = _create_repository(handle)

    await repository.find_in_partition("p1", "visits gt 2")

    query_filter = handle.query_calls[-1]
    assert query_filter.to_odata() == "(PartitionKey eq 'p1') and (visits gt 2)"
    assert query_filter.right == RawFilter("visits gt 2")


async def test_find_in_partition_without_condition_scopes_to_partition() -> None:
    handle = StubTableHandle()
    handle.seed(build_test_record("p1", "a"))
    handle.seed(build_test_record("p2", "b"))
    repository = _create_repository(handle)

    found = await repository.find_in_partition("p1")

    assert [record.identity for record in found] == [("p1", "a")]


async def test_delete_where_scans_then_batch_deletes_matches() -> None:
    handle = StubTableHandle()
    for index in range(4):
        handle.seed(build_test_record("p1", f"r{index}", visits=index))
    handle.seed(build_test_record("p2", "x", visits=10))
    repository = _create_repository(handle)

    await repository.delete_where(field("visits").ge(2))

    assert sorted(handle.entities) == [("p1", "r0"), ("p1", "r1")]
    assert len(handle.query_calls) == 1
    assert sum(len(chunk) for chunk in handle.batch_calls) == 3
