from bookbench.benchmarks.charts import render_measurement_charts
from bookbench.store import PlanStats

from .conftest import make_measurement


def test_charts_are_written_per_run(tmp_path):
    measurements = [
        make_measurement(dataset_size=2_000, execution_time_ms=3.0),
        make_measurement(dataset_size=10_000, execution_time_ms=9.0, plan=PlanStats()),
        make_measurement(
            dataset_size=2_000,
            query_label="Available for 7-day period in Aug 2025",
            execution_time_ms=5.0,
        ),
    ]

    paths = render_measurement_charts(measurements, tmp_path, "stamp")

    assert [p.name for p in paths] == ["query_latency_stamp.png", "query_scan_stamp.png"]
    assert all(p.exists() and p.stat().st_size > 0 for p in paths)


def test_no_measurements_no_charts(tmp_path):
    assert render_measurement_charts([], tmp_path, "stamp") == []
