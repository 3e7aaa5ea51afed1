from __future__ import annotations

import json

from perftester.benchmarks.charts import render_duration_chart
from perftester.benchmarks.collector import COLUMNS, ResultCollector
from perftester.benchmarks.load import LoadReport
from perftester.benchmarks.scenarios import ScenarioOutcome


def outcome(name, status="ok", **kwargs) -> ScenarioOutcome:
    return ScenarioOutcome(name=name, label=name, kind="batch_round_trip", status=status, **kwargs)


def sample_collector() -> ResultCollector:
    collector = ResultCollector()
    collector.add_outcome(outcome("connectivity", detail="connected"))
    collector.add_outcome(
        outcome("batch-round-trip", elapsed_ms=100.0, iterations=50, average_ms=2.0)
    )
    collector.add_outcome(
        outcome(
            "single-round-trip",
            status="failed",
            failure_kind="non_zero_exit",
            elapsed_ms=12.5,
            exit_code=255,
            detail="exited with status 255",
        )
    )
    report = LoadReport(
        run_id="abcd1234",
        record_prefix="loaduser_abcd1234_",
        concurrency=2,
        per_worker_iterations=10,
        wall_clock_ms=321.0,
        workers=[
            outcome("load-worker-0", elapsed_ms=300.0, worker=0),
            outcome(
                "load-worker-1",
                status="failed",
                failure_kind="timeout",
                elapsed_ms=310.0,
                worker=1,
                detail="worker-1 exceeded 1.0s and was killed",
            ),
        ],
        cleanup=outcome("load-cleanup", elapsed_ms=20.0),
    )
    collector.add_load_report(report)
    return collector


def test_dataframe_has_one_row_per_outcome():
    df = sample_collector().build_dataframe()
    assert list(df.columns) == COLUMNS
    assert len(df) == 6
    assert set(df["group"]) == {"scenario", "load"}


def test_empty_dataframe_keeps_columns():
    df = ResultCollector().build_dataframe()
    assert df.empty
    assert list(df.columns) == COLUMNS


def test_summary_separates_successes_from_failures():
    collector = sample_collector()
    summary = collector.format_summary()
    assert "batch-round-trip: 100.00ms total, 2.00ms average over 50 iterations" in summary
    assert "connectivity: connected" in summary
    assert "Load run abcd1234: 321.00ms wall clock, 1/2 workers ok" in summary
    assert "single-round-trip: non_zero_exit: exited with status 255" in summary
    assert "load-worker-1 (worker 1): timeout" in summary
    assert summary.splitlines()[-1] == "Status: FAILURES (4 ok, 2 failed)"
    assert not collector.all_ok
    assert collector.summaries() == {"ok": 4, "failed": 2}


def test_write_artifacts(tmp_path):
    collector = sample_collector()
    paths = collector.write_artifacts(tmp_path / "out")
    manifest = json.loads((tmp_path / "out" / "summary.json").read_text(encoding="utf-8"))
    assert manifest["status"] == "failed"
    assert manifest["load_runs"][0]["run_id"] == "abcd1234"
    assert (tmp_path / "out" / "results.csv").exists()
    assert paths["manifest"].endswith("summary.json")


def test_duration_chart_is_rendered(tmp_path):
    df = sample_collector().build_dataframe()
    chart = render_duration_chart(df, tmp_path)
    assert chart == tmp_path / "durations.png"
    assert chart.stat().st_size > 0


def test_duration_chart_skips_untimed_results(tmp_path):
    collector = ResultCollector()
    collector.add_outcome(outcome("connectivity", detail="connected"))
    assert render_duration_chart(collector.build_dataframe(), tmp_path) is None
    assert render_duration_chart(ResultCollector().build_dataframe(), tmp_path) is None
