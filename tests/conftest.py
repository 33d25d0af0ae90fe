"""Shared fixtures for the benchmark harness tests."""

import random

import matplotlib

matplotlib.use("Agg")

import pytest
import pytest_asyncio
from bson import ObjectId

from bookbench.benchmarks.collector import CollectionSnapshot, Measurement
from bookbench.benchmarks.load import DatasetLoadGenerator, ReferenceData
from bookbench.store import InMemoryStorageDriver, PlanStats


@pytest_asyncio.fixture
async def driver():
    store = InMemoryStorageDriver()
    async with store.connected():
        yield store


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def reference(rng) -> ReferenceData:
    return ReferenceData.generate(rng)


@pytest.fixture
def generator(driver, reference, rng) -> DatasetLoadGenerator:
    return DatasetLoadGenerator(driver, reference, rng)


def make_resource(category_id=None, status="active", resource_id=None) -> dict:
    return {
        "_id": resource_id or ObjectId(),
        "owner_id": ObjectId(),
        "category_id": category_id or ObjectId(),
        "subcategory_id": ObjectId(),
        "location": {"type": "Point", "coordinates": [12.5, 41.9]},
        "status": status,
    }


def make_booking(resource_id, start, end, status="reserved") -> dict:
    return {
        "_id": ObjectId(),
        "resource_id": resource_id,
        "start": start,
        "end": end,
        "status": status,
    }


def make_measurement(
    dataset_size=2_000,
    query_label="Available Aug 14-28, 2025",
    result_count=12_345,
    execution_time_ms=3.5,
    plan=None,
    snapshot=None,
) -> Measurement:
    return Measurement(
        dataset_size=dataset_size,
        query_label=query_label,
        result_count=result_count,
        execution_time_ms=execution_time_ms,
        plan=plan or PlanStats(docs_examined=2_000, keys_examined=0),
        snapshot=snapshot
        or CollectionSnapshot(
            total_resources=2_000,
            total_bookings=3_000,
            resources_size_mb=0.98,
            bookings_size_mb=0.59,
            resources_size_estimated=True,
            bookings_size_estimated=False,
        ),
    )
