from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Sequence

import pandas as pd

from ..store import PlanStats, StatsResult, StorageDriver
from .config import BOOKING_KB_PER_DOC, RESOURCE_KB_PER_DOC, CollectionNames

LOGGER = logging.getLogger("bookbench.benchmark.collector")

MEASUREMENT_COLUMNS = [
    "dataset_size",
    "query_label",
    "result_count",
    "execution_time_ms",
    "total_resources",
    "total_bookings",
    "resources_size_mb",
    "bookings_size_mb",
    "resources_size_estimated",
    "bookings_size_estimated",
    "docs_examined",
    "keys_examined",
]


@dataclass(frozen=True)
class CollectionSnapshot:
    """Document totals and storage sizes taken right after a measured query."""

    total_resources: int | None
    total_bookings: int | None
    resources_size_mb: float | None
    bookings_size_mb: float | None
    resources_size_estimated: bool = False
    bookings_size_estimated: bool = False


@dataclass(frozen=True)
class Measurement:
    dataset_size: int
    query_label: str
    result_count: int
    execution_time_ms: float
    plan: PlanStats
    snapshot: CollectionSnapshot

    def as_row(self) -> dict:
        row = {
            "dataset_size": self.dataset_size,
            "query_label": self.query_label,
            "result_count": self.result_count,
            "execution_time_ms": self.execution_time_ms,
            "docs_examined": self.plan.docs_examined,
            "keys_examined": self.plan.keys_examined,
        }
        row.update(asdict(self.snapshot))
        return row


def bytes_to_mb(size: float) -> float:
    return round(size / (1024 * 1024), 2)


def estimate_mb(count: int | None, kb_per_doc: float) -> float:
    return round((count or 0) * kb_per_doc / 1024, 2)


def _size_mb(
    result: StatsResult, count: int | None, kb_per_doc: float, collection: str
) -> tuple[float, bool]:
    def fallback(error) -> float:
        LOGGER.info("Estimating size of %s from document count: %s", collection, error)
        return estimate_mb(count, kb_per_doc)

    return result.map(bytes_to_mb).unwrap_or_else(fallback), not result.is_ok


async def capture_snapshot(
    driver: StorageDriver, collections: CollectionNames
) -> CollectionSnapshot:
    total_resources = await driver.estimated_count(collections.resources)
    total_bookings = await driver.estimated_count(collections.bookings)

    resources_mb, resources_estimated = _size_mb(
        await driver.collection_size_bytes(collections.resources),
        total_resources,
        RESOURCE_KB_PER_DOC,
        collections.resources,
    )
    bookings_mb, bookings_estimated = _size_mb(
        await driver.collection_size_bytes(collections.bookings),
        total_bookings,
        BOOKING_KB_PER_DOC,
        collections.bookings,
    )
    return CollectionSnapshot(
        total_resources=total_resources,
        total_bookings=total_bookings,
        resources_size_mb=resources_mb,
        bookings_size_mb=bookings_mb,
        resources_size_estimated=resources_estimated,
        bookings_size_estimated=bookings_estimated,
    )


def build_dataframe(measurements: Sequence[Measurement]) -> pd.DataFrame:
    if not measurements:
        return pd.DataFrame(columns=MEASUREMENT_COLUMNS)
    return pd.DataFrame([m.as_row() for m in measurements], columns=MEASUREMENT_COLUMNS)
