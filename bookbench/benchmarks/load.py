from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Sequence

from bson import ObjectId

from ..store import PartialBatchFailure, StorageDriver
from .config import (
    BOOKING_STATUSES,
    CATEGORY_COUNT,
    INSERT_BATCH_SIZE,
    MAX_OWNERS,
    PROGRESS_LOG_EVERY,
    SUBCATEGORY_COUNT,
    BookingSeason,
    CollectionNames,
)

LOGGER = logging.getLogger("bookbench.benchmark.load")


def random_object_id(rng: random.Random) -> ObjectId:
    return ObjectId(rng.randbytes(12))


def random_object_ids(rng: random.Random, count: int) -> list[ObjectId]:
    return [random_object_id(rng) for _ in range(count)]


@dataclass(frozen=True)
class ReferenceData:
    """Category and subcategory ids shared by every resource of a run."""

    categories: tuple[ObjectId, ...]
    subcategories: tuple[ObjectId, ...]

    @classmethod
    def generate(cls, rng: random.Random) -> "ReferenceData":
        return cls(
            categories=tuple(random_object_ids(rng, CATEGORY_COUNT)),
            subcategories=tuple(random_object_ids(rng, SUBCATEGORY_COUNT)),
        )


def random_coordinates(rng: random.Random) -> list[float]:
    lat = round(rng.random() * 180 - 90, 6)
    lng = round(rng.random() * 360 - 180, 6)
    return [lng, lat]


def random_instant(rng: random.Random, start: datetime, end: datetime) -> datetime:
    return start + (end - start) * rng.random()


def build_resource(
    index: int,
    rng: random.Random,
    reference: ReferenceData,
    owner_ids: Sequence[ObjectId],
    inactive_ratio: float = 0.0,
) -> dict:
    """Build the ``index``-th resource of a generation call from ``rng``."""
    status = "inactive" if inactive_ratio > 0 and rng.random() < inactive_ratio else "active"
    return {
        "_id": random_object_id(rng),
        "owner_id": rng.choice(owner_ids),
        "category_id": rng.choice(reference.categories),
        "subcategory_id": rng.choice(reference.subcategories),
        "location": {"type": "Point", "coordinates": random_coordinates(rng)},
        "status": status,
        "seq": index,
    }


def build_bookings(
    resource_id: ObjectId, rng: random.Random, season: BookingSeason
) -> list[dict]:
    """Bookings for one resource; those running past the season end are dropped."""
    if rng.random() >= season.booking_probability:
        return []

    bookings = []
    for _ in range(rng.randint(season.min_bookings, season.max_bookings)):
        start = random_instant(rng, season.start, season.end)
        days = rng.random() * season.max_extra_days + season.min_duration_days
        end = start + timedelta(days=days)
        status = rng.choice(BOOKING_STATUSES)
        if end <= season.end:
            bookings.append(
                {
                    "_id": random_object_id(rng),
                    "resource_id": resource_id,
                    "start": start,
                    "end": end,
                    "status": status,
                }
            )
    return bookings


@dataclass
class InsertStatistics:
    requested: int = 0
    inserted: int = 0
    rejected_ids: set[ObjectId] = field(default_factory=set)

    @property
    def failed(self) -> int:
        return len(self.rejected_ids)


class DatasetLoadGenerator:
    """Generates resources and bookings and writes them in unordered batches."""

    def __init__(
        self,
        driver: StorageDriver,
        reference: ReferenceData,
        rng: random.Random,
        collections: CollectionNames = CollectionNames(),
        season: BookingSeason = BookingSeason(),
        batch_size: int = INSERT_BATCH_SIZE,
        inactive_ratio: float = 0.0,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self._driver = driver
        self._reference = reference
        self._rng = rng
        self._collections = collections
        self._season = season
        self._batch_size = batch_size
        self._inactive_ratio = inactive_ratio
        self._next_index = 0

    async def generate_resources(self, count: int) -> list[ObjectId]:
        LOGGER.info("Generating %s resources...", f"{count:,}")
        started_at = time.perf_counter()

        owner_ids = random_object_ids(self._rng, max(1, min(MAX_OWNERS, count // 10)))
        resources = []
        for _ in range(count):
            resources.append(
                build_resource(
                    self._next_index,
                    self._rng,
                    self._reference,
                    owner_ids,
                    self._inactive_ratio,
                )
            )
            self._next_index += 1

        stats = await self._insert_batches(self._collections.resources, resources, "resources")
        LOGGER.info(
            "Generated %s resources in %.2fs",
            f"{stats.inserted:,}",
            time.perf_counter() - started_at,
        )
        # Bookings may only reference resources that were actually stored.
        return [
            resource["_id"]
            for resource in resources
            if resource["_id"] not in stats.rejected_ids
        ]

    async def generate_bookings(self, resource_ids: Sequence[ObjectId]) -> int:
        LOGGER.info("Generating bookings for %s resources...", f"{len(resource_ids):,}")
        started_at = time.perf_counter()

        bookings = []
        for resource_id in resource_ids:
            bookings.extend(build_bookings(resource_id, self._rng, self._season))

        stats = await self._insert_batches(self._collections.bookings, bookings, "bookings")
        LOGGER.info(
            "Generated %s bookings in %.2fs",
            f"{stats.inserted:,}",
            time.perf_counter() - started_at,
        )
        return stats.inserted

    async def _insert_batches(
        self, collection: str, documents: list[dict], noun: str
    ) -> InsertStatistics:
        stats = InsertStatistics(requested=len(documents))
        for offset in range(0, len(documents), self._batch_size):
            batch = documents[offset : offset + self._batch_size]
            try:
                stats.inserted += await self._driver.insert_many(collection, batch)
            except PartialBatchFailure as exc:
                stats.inserted += exc.inserted
                for failure in exc.failures:
                    if failure.index is not None and 0 <= failure.index < len(batch):
                        stats.rejected_ids.add(batch[failure.index]["_id"])
                    LOGGER.warning(
                        "Failed to insert %s document at batch offset %d (index %s, code %s): %s",
                        noun,
                        offset,
                        failure.index,
                        failure.code,
                        failure.message,
                    )
            if offset % PROGRESS_LOG_EVERY == 0:
                LOGGER.info("Inserted %s %s...", f"{offset + len(batch):,}", noun)
        if stats.failed:
            LOGGER.warning("%d of %d %s were rejected", stats.failed, stats.requested, noun)
        return stats
