"""Availability queries over resources and their bookings.

A resource is available for a window when it is active, matches the optional
category filter and no booking for it overlaps the window. Overlap uses closed
intervals, so a booking ending exactly at the window start (or starting exactly
at its end) still blocks the resource.

The query runs in two steps: the distinct ids of resources with an overlapping
booking are fetched first, then resources are filtered with ``$nin`` on that
list. Each step can use its own index.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping

from ..store import StorageDriver
from .config import CollectionNames


class InvalidWindow(ValueError):
    """Raised for a window whose end is not after its start."""


@dataclass(frozen=True)
class AvailabilityWindow:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise InvalidWindow(
                f"window end {self.end.isoformat()} must be after start {self.start.isoformat()}"
            )


@dataclass(frozen=True)
class AvailabilityQuery:
    window: AvailabilityWindow
    category_id: Any = None

    def overlap_predicate(self) -> dict[str, Any]:
        return {
            "start": {"$lte": self.window.end},
            "end": {"$gte": self.window.start},
        }

    def resource_predicate(self, excluded_ids: Iterable[Any]) -> dict[str, Any]:
        predicate: dict[str, Any] = {"status": "active"}
        if self.category_id is not None:
            predicate["category_id"] = self.category_id
        predicate["_id"] = {"$nin": list(excluded_ids)}
        return predicate


def build_availability_query(
    window: AvailabilityWindow, category_id: Any = None
) -> AvailabilityQuery:
    return AvailabilityQuery(window=window, category_id=category_id)


async def resolve_resource_predicate(
    driver: StorageDriver,
    query: AvailabilityQuery,
    collections: CollectionNames = CollectionNames(),
) -> dict[str, Any]:
    """Fetch the current exclusion list and return the resource filter.

    The exclusion list is recomputed on every call.
    """
    excluded = await driver.distinct(
        collections.bookings, "resource_id", query.overlap_predicate()
    )
    return query.resource_predicate(excluded)


def intervals_overlap(start: datetime, end: datetime, window: AvailabilityWindow) -> bool:
    return start <= window.end and end >= window.start


def available_resource_ids(
    resources: Iterable[Mapping[str, Any]],
    bookings: Iterable[Mapping[str, Any]],
    query: AvailabilityQuery,
) -> set[Any]:
    """Evaluate availability directly over records, without a store."""
    blocked = {
        booking["resource_id"]
        for booking in bookings
        if intervals_overlap(booking["start"], booking["end"], query.window)
    }
    return {
        resource["_id"]
        for resource in resources
        if resource.get("status") == "active"
        and (query.category_id is None or resource.get("category_id") == query.category_id)
        and resource["_id"] not in blocked
    }
