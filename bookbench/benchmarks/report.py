from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from .collector import Measurement

LOGGER = logging.getLogger("bookbench.benchmark.report")

TABULAR_HEADER = (
    "Dataset Size",
    "Query Name",
    "Result Count",
    "Execution Time (ms)",
    "Total Spaces",
    "Total Bookings",
    "Spaces Collection Size (MB)",
    "Bookings Collection Size (MB)",
    "Documents Examined",
    "Keys Examined",
)

NARRATIVE_TITLE = "AVAILABILITY QUERY PERFORMANCE TEST REPORT"
DIVIDER = "-" * 50
NOT_AVAILABLE = "N/A"


@dataclass(frozen=True)
class ReportBundle:
    tabular: str
    narrative: str


@dataclass(frozen=True)
class ReportPaths:
    tabular: Path
    narrative: Path


def report_timestamp(now: datetime | None = None) -> str:
    """Filesystem-safe timestamp shared by all artefacts of one run."""
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"


def _or_zero(value: Any) -> Any:
    return 0 if value is None else value


def _count(value: int | None) -> str:
    return NOT_AVAILABLE if value is None else f"{value:,}"


def _size(value: float | None, estimated: bool) -> str:
    if value is None:
        return NOT_AVAILABLE
    return f"{value} MB (estimated)" if estimated else f"{value} MB"


def _tabular(measurements: Sequence[Measurement]) -> str:
    buffer = io.StringIO()
    buffer.write(",".join(TABULAR_HEADER) + "\n")
    writer = csv.writer(buffer, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n")
    for m in measurements:
        writer.writerow(
            [
                m.dataset_size,
                m.query_label,
                m.result_count,
                m.execution_time_ms,
                _or_zero(m.snapshot.total_resources),
                _or_zero(m.snapshot.total_bookings),
                _or_zero(m.snapshot.resources_size_mb),
                _or_zero(m.snapshot.bookings_size_mb),
                _or_zero(m.plan.docs_examined),
                _or_zero(m.plan.keys_examined),
            ]
        )
    return buffer.getvalue()


def _narrative_block(m: Measurement) -> list[str]:
    return [
        f"Dataset Size: {m.dataset_size:,} resources",
        f"Query: {m.query_label}",
        f"Result Count: {m.result_count:,}",
        f"Execution Time: {m.execution_time_ms}ms",
        f"Total Spaces: {_count(m.snapshot.total_resources)}",
        f"Total Bookings: {_count(m.snapshot.total_bookings)}",
        f"Spaces Collection Size: {_size(m.snapshot.resources_size_mb, m.snapshot.resources_size_estimated)}",
        f"Bookings Collection Size: {_size(m.snapshot.bookings_size_mb, m.snapshot.bookings_size_estimated)}",
        f"Documents Examined: {_count(m.plan.docs_examined)}",
        f"Keys Examined: {_count(m.plan.keys_examined)}",
    ]


def _narrative(measurements: Sequence[Measurement]) -> str:
    lines = [NARRATIVE_TITLE, "=" * 50, ""]
    for m in measurements:
        lines.extend(_narrative_block(m))
        lines.append(DIVIDER)
        lines.append("")
    return "\n".join(lines) + "\n"


def aggregate(measurements: Sequence[Measurement]) -> ReportBundle:
    """Render measurements as delimited text and as a human-readable report.

    Absent statistics are written as ``0`` in the delimited form and ``N/A`` in
    the readable one.
    """
    return ReportBundle(tabular=_tabular(measurements), narrative=_narrative(measurements))


def write_reports(bundle: ReportBundle, output_dir: Path, timestamp: str) -> ReportPaths:
    if not output_dir.exists():
        output_dir.mkdir(parents=True, exist_ok=True)
        LOGGER.info("Created reports directory %s", output_dir)

    paths = ReportPaths(
        tabular=output_dir / f"performance_report_{timestamp}.csv",
        narrative=output_dir / f"performance_report_{timestamp}.txt",
    )
    paths.tabular.write_text(bundle.tabular, encoding="utf-8")
    paths.narrative.write_text(bundle.narrative, encoding="utf-8")
    LOGGER.info("Reports saved:")
    LOGGER.info("- %s", paths.tabular)
    LOGGER.info("- %s", paths.narrative)
    return paths


def log_summary(measurements: Sequence[Measurement]) -> None:
    LOGGER.info("=" * 80)
    LOGGER.info("PERFORMANCE TEST REPORT")
    LOGGER.info("=" * 80)
    for m in measurements:
        for line in _narrative_block(m):
            LOGGER.info(line)
        LOGGER.info("")
