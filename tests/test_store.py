import pytest
from bson import ObjectId

from bookbench.benchmarks.config import utc
from bookbench.store import (
    DUPLICATE_KEY,
    CollectionNotFound,
    InMemoryStorageDriver,
    PartialBatchFailure,
    StatsResult,
    StatsUnavailable,
    StorageConnectionError,
    compile_predicate,
)

from .conftest import make_booking, make_resource


def test_compile_predicate_equality_and_ranges():
    matcher = compile_predicate({"status": "active", "start": {"$lte": utc(2025, 8, 28)}})

    assert matcher({"status": "active", "start": utc(2025, 8, 1)})
    assert matcher({"status": "active", "start": utc(2025, 8, 28)})
    assert not matcher({"status": "active", "start": utc(2025, 8, 29)})
    assert not matcher({"status": "inactive", "start": utc(2025, 8, 1)})
    assert not matcher({"status": "active"})


def test_compile_predicate_membership_and_or():
    excluded = ObjectId()
    matcher = compile_predicate(
        {"_id": {"$nin": [excluded]}, "$or": [{"kind": "a"}, {"kind": {"$in": ["b", "c"]}}]}
    )

    assert matcher({"_id": ObjectId(), "kind": "c"})
    assert not matcher({"_id": excluded, "kind": "a"})
    assert not matcher({"_id": ObjectId(), "kind": "d"})


def test_compile_predicate_rejects_unknown_operator():
    with pytest.raises(ValueError):
        compile_predicate({"location": {"$near": [0, 0]}})


def test_stats_result_fallback_only_on_failure():
    ok = StatsResult.ok(2 * 1024 * 1024).map(lambda size: size / (1024 * 1024))
    failed = StatsResult.failed(StatsUnavailable("no stats")).map(lambda size: size * 1000)

    assert ok.is_ok
    assert ok.unwrap_or_else(lambda error: -1.0) == 2.0
    assert not failed.is_ok
    assert failed.unwrap_or_else(lambda error: -1.0) == -1.0


@pytest.mark.asyncio
async def test_operations_require_connection():
    store = InMemoryStorageDriver()
    with pytest.raises(StorageConnectionError):
        await store.count("advertising_spaces")


@pytest.mark.asyncio
async def test_connected_scope_releases_on_failure():
    store = InMemoryStorageDriver()
    with pytest.raises(RuntimeError):
        async with store.connected():
            assert store.is_connected
            raise RuntimeError("boom")
    assert not store.is_connected


def test_connection_error_is_builtin_connection_error():
    assert issubclass(StorageConnectionError, ConnectionError)


@pytest.mark.asyncio
async def test_duplicate_documents_do_not_block_the_rest_of_the_batch(driver):
    existing = make_resource()
    await driver.insert_many("advertising_spaces", [existing])

    batch = [make_resource(), dict(existing), make_resource()]
    with pytest.raises(PartialBatchFailure) as excinfo:
        await driver.insert_many("advertising_spaces", batch)

    assert excinfo.value.inserted == 2
    assert [f.index for f in excinfo.value.failures] == [1]
    assert excinfo.value.failures[0].code == DUPLICATE_KEY
    assert await driver.count("advertising_spaces") == 3


@pytest.mark.asyncio
async def test_create_index_is_idempotent(driver):
    first = await driver.create_index("advertising_spaces", [("status", 1), ("category_id", 1)])
    before = driver.index_information("advertising_spaces")
    second = await driver.create_index("advertising_spaces", [("status", 1), ("category_id", 1)])

    assert first == second == "status_1_category_id_1"
    assert driver.index_information("advertising_spaces") == before


@pytest.mark.asyncio
async def test_drop_missing_collection_raises_collection_not_found(driver):
    with pytest.raises(CollectionNotFound):
        await driver.drop_collection("advertising_spaces")


@pytest.mark.asyncio
async def test_drop_removes_documents_and_indexes(driver):
    await driver.insert_many("advertising_spaces", [make_resource()])
    await driver.create_index("advertising_spaces", [("status", 1)])

    await driver.drop_collection("advertising_spaces")

    assert await driver.count("advertising_spaces") == 0
    assert driver.index_information("advertising_spaces") == {}


@pytest.mark.asyncio
async def test_distinct_and_explain(driver):
    resource = make_resource()
    await driver.insert_many(
        "advertising_space_bookings",
        [
            make_booking(resource["_id"], utc(2025, 8, 1), utc(2025, 8, 3)),
            make_booking(resource["_id"], utc(2025, 8, 5), utc(2025, 8, 9)),
        ],
    )

    values = await driver.distinct("advertising_space_bookings", "resource_id", {})
    plan = await driver.explain("advertising_space_bookings", {"status": "reserved"})

    assert values == [resource["_id"]]
    assert plan.docs_examined == 2
    assert plan.keys_examined == 0


@pytest.mark.asyncio
async def test_in_memory_size_is_unavailable(driver):
    result = await driver.collection_size_bytes("advertising_spaces")
    assert not result.is_ok
    assert isinstance(result.error, StatsUnavailable)
