from __future__ import annotations

import enum
import logging
import time
from typing import Sequence

from ..store import CollectionNotFound, StorageConnectionError, StorageDriver, StorageError
from .collector import Measurement, capture_snapshot
from .config import BenchmarkPlan, CollectionNames, DatasetStep, QueryCase, index_definitions
from .load import DatasetLoadGenerator, ReferenceData
from .query import AvailabilityWindow, build_availability_query, resolve_resource_predicate

LOGGER = logging.getLogger("bookbench.benchmark.runner")


class RunPhase(enum.Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    GENERATING = "generating"
    INDEXING = "indexing"
    QUERYING = "querying"
    RECORDED = "recorded"
    DONE = "done"


class BenchmarkRunner:
    """Grows the dataset step by step and measures the availability queries.

    Phases run strictly one after another. Any failure is logged with the phase
    it happened in and re-raised; nothing is retried.
    """

    def __init__(
        self,
        driver: StorageDriver,
        generator: DatasetLoadGenerator,
        reference: ReferenceData,
        collections: CollectionNames = CollectionNames(),
    ) -> None:
        self._driver = driver
        self._generator = generator
        self._reference = reference
        self._collections = collections
        self._phase = RunPhase.IDLE

    @property
    def phase(self) -> RunPhase:
        return self._phase

    def _enter(self, phase: RunPhase) -> None:
        LOGGER.debug("Phase %s -> %s", self._phase.value, phase.value)
        self._phase = phase

    async def run(self, plan: BenchmarkPlan, measurements: list[Measurement]) -> list[Measurement]:
        for step in plan:
            await self.run_step(step, plan.queries, measurements)
        self._enter(RunPhase.DONE)
        return measurements

    async def run_step(
        self,
        step: DatasetStep,
        queries: Sequence[QueryCase],
        measurements: list[Measurement],
    ) -> None:
        LOGGER.info("=" * 60)
        LOGGER.info("TESTING WITH %s RESOURCES (%s)", f"{step.size:,}", step.mode)
        LOGGER.info("=" * 60)
        try:
            self._enter(RunPhase.PREPARING)
            if not step.incremental:
                await self.clear_collections()
            current = await self._driver.count(self._collections.resources)
            to_add = step.size - current

            self._enter(RunPhase.GENERATING)
            if to_add > 0:
                resource_ids = await self._generator.generate_resources(to_add)
                await self._generator.generate_bookings(resource_ids)
            else:
                LOGGER.warning(
                    "Collection already holds %s resources; nothing to add for %s",
                    f"{current:,}",
                    f"{step.size:,}",
                )

            self._enter(RunPhase.INDEXING)
            await self.create_indexes()

            self._enter(RunPhase.QUERYING)
            for case in queries:
                measurements.append(await self.run_query(case, step.size))

            self._enter(RunPhase.RECORDED)
        except Exception:
            LOGGER.error(
                "Benchmark failed while %s the %s resource dataset",
                self._phase.value,
                f"{step.size:,}",
            )
            raise

        await self._log_dataset_summary()

    async def clear_collections(self) -> None:
        LOGGER.info("Clearing existing collections...")
        for name in (self._collections.resources, self._collections.bookings):
            try:
                await self._driver.drop_collection(name)
            except CollectionNotFound:
                LOGGER.debug("Collection %s does not exist yet", name)
            except StorageConnectionError:
                raise
            except StorageError as exc:
                LOGGER.warning("Error dropping %s: %s", name, exc)
            else:
                LOGGER.info("Dropped %s collection", name)

    async def create_indexes(self) -> list[str]:
        LOGGER.info("Creating indexes...")
        started_at = time.perf_counter()
        names = []
        for definition in index_definitions(self._collections):
            names.append(await self._driver.create_index(definition.collection, definition.keys))
        LOGGER.info("Created indexes in %.2fs", time.perf_counter() - started_at)
        return names

    async def run_query(self, case: QueryCase, dataset_size: int) -> Measurement:
        LOGGER.info("=== Query: %s ===", case.label)
        category_id = None
        if case.category_index is not None:
            category_id = self._reference.categories[case.category_index]
        query = build_availability_query(AvailabilityWindow(case.start, case.end), category_id)

        predicate = await resolve_resource_predicate(self._driver, query, self._collections)

        started_at = time.perf_counter()
        results = await self._driver.find(self._collections.resources, predicate)
        execution_time_ms = round((time.perf_counter() - started_at) * 1000, 2)

        LOGGER.info("Found %s available resources", f"{len(results):,}")
        LOGGER.info("Execution time: %.2fms", execution_time_ms)

        plan = await self._driver.explain(self._collections.resources, predicate)
        snapshot = await capture_snapshot(self._driver, self._collections)
        return Measurement(
            dataset_size=dataset_size,
            query_label=case.label,
            result_count=len(results),
            execution_time_ms=execution_time_ms,
            plan=plan,
            snapshot=snapshot,
        )

    async def _log_dataset_summary(self) -> None:
        resources = await self._driver.count(self._collections.resources)
        bookings = await self._driver.count(self._collections.bookings)
        LOGGER.info("--- Dataset Summary ---")
        LOGGER.info("Total resources: %s", f"{resources:,}")
        LOGGER.info("Total bookings: %s", f"{bookings:,}")
