import json

import pytest

from bookbench.benchmarks.config import load_plan
from bookbench.benchmarks.main import main
from bookbench.store import InMemoryStorageDriver, StorageConnectionError


class UnreachableDriver(InMemoryStorageDriver):
    async def connect(self):
        raise StorageConnectionError("connection refused")


@pytest.fixture
def plan_path(tmp_path):
    path = tmp_path / "plan.json"
    path.write_text(
        json.dumps({"steps": [{"size": 40}, {"size": 90, "incremental": True}]}),
        encoding="utf-8",
    )
    return path


def test_load_plan_reads_json(plan_path):
    plan = load_plan(plan_path)
    assert [(s.size, s.incremental) for s in plan] == [(40, False), (90, True)]


def test_load_plan_rejects_empty_plan(tmp_path):
    path = tmp_path / "empty.json"
    path.write_text(json.dumps({"steps": []}), encoding="utf-8")
    with pytest.raises(ValueError):
        load_plan(path)


def test_dry_run_prints_default_plan(capsys):
    assert main(["--dry-run"]) == 0

    out = capsys.readouterr().out
    assert "Step: 2,000 resources (fresh)" in out
    assert "Step: 10,000 resources (incremental)" in out
    assert "Step: 100,000 resources (incremental)" in out
    assert "Available Aug 14-28, 2025" in out


def test_memory_backend_writes_reports_and_charts(tmp_path, plan_path):
    output_dir = tmp_path / "reports"

    code = main(
        [
            "--backend",
            "memory",
            "--plan-path",
            str(plan_path),
            "--output-dir",
            str(output_dir),
            "--seed",
            "3",
        ]
    )

    assert code == 0
    csv_files = list(output_dir.glob("performance_report_*.csv"))
    txt_files = list(output_dir.glob("performance_report_*.txt"))
    assert len(csv_files) == len(txt_files) == 1
    assert csv_files[0].stem == txt_files[0].stem
    assert len(csv_files[0].read_text(encoding="utf-8").splitlines()) == 5
    assert len(list(output_dir.glob("*.png"))) == 2


def test_no_charts_flag_skips_charts(tmp_path, plan_path):
    output_dir = tmp_path / "reports"

    code = main(
        [
            "--backend",
            "memory",
            "--plan-path",
            str(plan_path),
            "--output-dir",
            str(output_dir),
            "--no-charts",
        ]
    )

    assert code == 0
    assert not list(output_dir.glob("*.png"))


def test_connection_failure_exits_non_zero_without_report(tmp_path, plan_path):
    output_dir = tmp_path / "reports"

    code = main(
        ["--plan-path", str(plan_path), "--output-dir", str(output_dir)],
        driver=UnreachableDriver(),
    )

    assert code == 1
    assert not output_dir.exists()


def test_invalid_plan_exits_non_zero(tmp_path):
    assert main(["--plan-path", str(tmp_path / "missing.json"), "--dry-run"]) == 1


def test_unwritable_output_dir_exits_non_zero(tmp_path, plan_path):
    output_dir = tmp_path / "taken"
    output_dir.write_text("not a directory", encoding="utf-8")

    code = main(
        [
            "--backend",
            "memory",
            "--plan-path",
            str(plan_path),
            "--output-dir",
            str(output_dir),
            "--no-charts",
        ]
    )

    assert code == 1
    assert output_dir.read_text(encoding="utf-8") == "not a directory"
