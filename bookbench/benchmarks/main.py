from __future__ import annotations

import argparse
import asyncio
import logging
import os
import random
import sys
from pathlib import Path

from dotenv import load_dotenv

from ..store import InMemoryStorageDriver, MongoStorageDriver, StorageConnectionError, StorageDriver
from .charts import render_measurement_charts
from .collector import Measurement
from .config import BenchmarkPlan, CollectionNames, load_plan
from .load import DatasetLoadGenerator, ReferenceData
from .report import aggregate, log_summary, report_timestamp, write_reports
from .runner import BenchmarkRunner

LOGGER = logging.getLogger("bookbench.benchmark")

BACKENDS = ("mongo", "memory")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Availability query benchmark harness")
    parser.add_argument(
        "--mongodb-uri",
        default=os.environ.get("MONGODB_URI", "mongodb://localhost:27017"),
    )
    parser.add_argument(
        "--database", default=os.environ.get("BOOKBENCH_DB_NAME", "reservation_benchmark")
    )
    parser.add_argument(
        "--backend",
        choices=BACKENDS,
        default=os.environ.get("BOOKBENCH_BACKEND", "mongo"),
        help="Storage backend; 'memory' runs without a database server",
    )
    parser.add_argument(
        "--output-dir",
        default=os.environ.get("BOOKBENCH_OUTPUT_DIR", "reports"),
        help="Directory to store the reports and charts",
    )
    parser.add_argument(
        "--plan-path",
        default=os.environ.get("BOOKBENCH_PLAN_PATH"),
        help="Optional JSON file describing a custom dataset plan",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=_env_int("BOOKBENCH_SEED"),
        help="Seed for reproducible data generation",
    )
    parser.add_argument(
        "--no-charts",
        action="store_true",
        help="Skip rendering PNG charts",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only print the planned dataset steps without executing them",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("BOOKBENCH_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    return parser.parse_args(argv)


def _env_int(name: str) -> int | None:
    value = os.environ.get(name)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        print(f"invalid {name} value {value!r}; ignoring", file=sys.stderr)
        return None


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def create_driver(args: argparse.Namespace) -> StorageDriver:
    if args.backend == "memory":
        return InMemoryStorageDriver()
    return MongoStorageDriver(uri=args.mongodb_uri, database=args.database)


async def run_benchmark(
    driver: StorageDriver,
    plan: BenchmarkPlan,
    rng: random.Random,
    collections: CollectionNames = CollectionNames(),
) -> list[Measurement]:
    measurements: list[Measurement] = []
    async with driver.connected():
        reference = ReferenceData.generate(rng)
        generator = DatasetLoadGenerator(driver, reference, rng, collections)
        runner = BenchmarkRunner(driver, generator, reference, collections)
        await runner.run(plan, measurements)
    return measurements


def main(argv: list[str] | None = None, driver: StorageDriver | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        plan = load_plan(args.plan_path)
    except (OSError, ValueError, KeyError) as exc:
        LOGGER.error("Invalid benchmark plan %s: %s", args.plan_path, exc)
        return 1

    if args.dry_run:
        _print_plan(plan)
        return 0

    output_dir = Path(args.output_dir)
    LOGGER.info("Benchmark output directory: %s", output_dir)
    LOGGER.info("Storage backend: %s", args.backend)
    if args.seed is not None:
        LOGGER.info("Random seed: %d", args.seed)

    driver = driver or create_driver(args)
    try:
        measurements = asyncio.run(run_benchmark(driver, plan, random.Random(args.seed)))
    except StorageConnectionError as exc:
        LOGGER.error("Storage unavailable, aborting benchmark: %s", exc)
        return 1
    except Exception:  # noqa: BLE001
        LOGGER.exception("Benchmark failed")
        return 1

    log_summary(measurements)
    timestamp = report_timestamp()
    try:
        write_reports(aggregate(measurements), output_dir, timestamp)
        if not args.no_charts:
            render_measurement_charts(measurements, output_dir, timestamp)
    except OSError:
        LOGGER.exception("Failed to write benchmark reports to %s", output_dir)
        return 1
    LOGGER.info("Performance test completed")
    return 0


def _print_plan(plan: BenchmarkPlan) -> None:
    for step in plan:
        print(f"Step: {step.size:,} resources ({step.mode})")
    for case in plan.queries:
        scope = "all categories" if case.category_index is None else f"category #{case.category_index}"
        print(
            f"  - {case.label}: {case.start.date().isoformat()} .. "
            f"{case.end.date().isoformat()} ({scope})"
        )


if __name__ == "__main__":
    sys.exit(main())
