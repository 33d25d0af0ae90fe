from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Sequence

RESOURCE_COLLECTION = "advertising_spaces"
BOOKING_COLLECTION = "advertising_space_bookings"

INSERT_BATCH_SIZE = 1_000
PROGRESS_LOG_EVERY = 10_000

RESOURCE_STATUSES: tuple[str, ...] = ("active", "inactive")
BOOKING_STATUSES: tuple[str, ...] = ("reserved", "hold", "maintenance")

CATEGORY_COUNT = 3
SUBCATEGORY_COUNT = 12
MAX_OWNERS = 100

# KB per document when the store cannot report a collection size.
RESOURCE_KB_PER_DOC = 0.5
BOOKING_KB_PER_DOC = 0.2


def utc(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, tzinfo=timezone.utc)


@dataclass(frozen=True)
class CollectionNames:
    resources: str = RESOURCE_COLLECTION
    bookings: str = BOOKING_COLLECTION


@dataclass(frozen=True)
class BookingSeason:
    """Time span every generated booking must fall within."""

    start: datetime = utc(2025, 7, 1)
    end: datetime = utc(2025, 12, 31)
    booking_probability: float = 0.5
    min_bookings: int = 2
    max_bookings: int = 6
    min_duration_days: float = 1.0
    max_extra_days: float = 30.0


@dataclass(frozen=True)
class QueryCase:
    """One canonical availability query executed after every dataset step.

    ``category_index`` selects a reference category by position; ``None`` means
    the query scans the whole active set.
    """

    label: str
    start: datetime
    end: datetime
    category_index: int | None = None


@dataclass(frozen=True)
class DatasetStep:
    size: int
    incremental: bool = False

    @property
    def mode(self) -> str:
        return "incremental" if self.incremental else "fresh"


@dataclass(frozen=True)
class IndexDefinition:
    collection: str
    keys: tuple[tuple[str, Any], ...]


@dataclass
class BenchmarkPlan:
    """Ordered dataset steps plus the queries measured at every step."""

    steps: list[DatasetStep] = field(default_factory=list)
    queries: list[QueryCase] = field(default_factory=list)

    def __post_init__(self) -> None:
        previous = 0
        for step in self.steps:
            if step.size <= previous:
                raise ValueError(
                    f"Dataset sizes must be strictly increasing, got {step.size} after {previous}"
                )
            previous = step.size

    def __iter__(self) -> Iterator[DatasetStep]:
        return iter(self.steps)


DEFAULT_QUERIES: tuple[QueryCase, ...] = (
    QueryCase(
        label="Available Aug 14-28, 2025",
        start=utc(2025, 8, 14),
        end=utc(2025, 8, 28),
        category_index=0,
    ),
    QueryCase(
        label="Available for 7-day period in Aug 2025",
        start=utc(2025, 8, 15),
        end=utc(2025, 8, 22),
    ),
)


def default_benchmark_plan() -> BenchmarkPlan:
    """Return the fixed 2k -> 10k -> 100k growth sequence."""
    return BenchmarkPlan(
        steps=[
            DatasetStep(size=2_000),
            DatasetStep(size=10_000, incremental=True),
            DatasetStep(size=100_000, incremental=True),
        ],
        queries=list(DEFAULT_QUERIES),
    )


def load_plan(path: str | Path | None) -> BenchmarkPlan:
    """Load a plan from JSON (``{"steps": [{"size": 2000, "incremental": false}]}``)."""
    if not path:
        return default_benchmark_plan()
    with open(path, "r", encoding="utf-8") as f:
        payload = json.load(f)
    steps = [
        DatasetStep(size=int(item["size"]), incremental=bool(item.get("incremental", False)))
        for item in payload.get("steps", [])
    ]
    if not steps:
        raise ValueError(f"Benchmark plan {path} defines no steps")
    return BenchmarkPlan(steps=steps, queries=list(DEFAULT_QUERIES))


def index_definitions(names: CollectionNames) -> Sequence[IndexDefinition]:
    """Index set a production deployment would carry."""
    return (
        IndexDefinition(names.resources, (("status", 1),)),
        IndexDefinition(names.resources, (("category_id", 1),)),
        IndexDefinition(names.resources, (("subcategory_id", 1),)),
        IndexDefinition(names.resources, (("location", "2dsphere"),)),
        IndexDefinition(names.resources, (("status", 1), ("category_id", 1))),
        IndexDefinition(names.bookings, (("resource_id", 1),)),
        IndexDefinition(names.bookings, (("start", 1), ("end", 1))),
        IndexDefinition(names.bookings, (("resource_id", 1), ("start", 1), ("end", 1))),
    )
