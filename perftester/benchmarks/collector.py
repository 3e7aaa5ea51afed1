from __future__ import annotations

import collections
import json
from dataclasses import fields
from pathlib import Path
from typing import Any, Iterable

import pandas as pd

from .load import LoadReport
from .scenarios import ScenarioOutcome

COLUMNS = [field.name for field in fields(ScenarioOutcome)] + ["group"]


class ResultCollector:
    """Accumulates scenario and load outcomes for the final summary."""

    def __init__(self) -> None:
        self._rows: list[dict[str, Any]] = []
        self._outcomes: list[ScenarioOutcome] = []
        self._load_reports: list[LoadReport] = []

    def add_outcome(self, outcome: ScenarioOutcome, group: str = "scenario") -> None:
        self._outcomes.append(outcome)
        row = outcome.to_row()
        row["group"] = group
        self._rows.append(row)

    def add_outcomes(self, outcomes: Iterable[ScenarioOutcome], group: str = "scenario") -> None:
        for outcome in outcomes:
            self.add_outcome(outcome, group=group)

    def add_load_report(self, report: LoadReport) -> None:
        self._load_reports.append(report)
        self.add_outcomes(report.outcomes, group="load")

    @property
    def outcomes(self) -> list[ScenarioOutcome]:
        return list(self._outcomes)

    @property
    def load_reports(self) -> list[LoadReport]:
        return list(self._load_reports)

    @property
    def failures(self) -> list[ScenarioOutcome]:
        return [outcome for outcome in self._outcomes if not outcome.ok]

    @property
    def all_ok(self) -> bool:
        return not self.failures

    def summaries(self) -> dict[str, int]:
        counter = collections.Counter(outcome.status for outcome in self._outcomes)
        return dict(counter)

    def build_dataframe(self) -> pd.DataFrame:
        if not self._rows:
            return pd.DataFrame(columns=COLUMNS)
        return pd.DataFrame(self._rows, columns=COLUMNS)

    def format_summary(self) -> str:
        lines = ["Benchmark summary:"]

        successes = [outcome for outcome in self._outcomes if outcome.ok and outcome.worker is None]
        if successes:
            lines.append("  Successful:")
        for outcome in successes:
            if outcome.elapsed_ms is None:
                lines.append(f"    {outcome.name}: {outcome.detail or 'ok'}")
            elif outcome.average_ms is not None:
                lines.append(
                    f"    {outcome.name}: {outcome.elapsed_ms:.2f}ms total, "
                    f"{outcome.average_ms:.2f}ms average over {outcome.iterations} iterations"
                )
            else:
                lines.append(f"    {outcome.name}: {outcome.elapsed_ms:.2f}ms")

        for report in self._load_reports:
            ok_workers = sum(1 for outcome in report.workers if outcome.ok)
            lines.append(
                f"  Load run {report.run_id}: {report.wall_clock_ms:.2f}ms wall clock, "
                f"{ok_workers}/{report.concurrency} workers ok, "
                f"{report.per_worker_iterations} records per worker"
            )

        failures = self.failures
        if failures:
            lines.append("  Failed:")
        for outcome in failures:
            where = outcome.name if outcome.worker is None else f"{outcome.name} (worker {outcome.worker})"
            detail = f": {outcome.detail}" if outcome.detail else ""
            lines.append(f"    {where}: {outcome.failure_kind}{detail}")

        status = "OK" if self.all_ok else "FAILURES"
        lines.append(f"Status: {status} ({len(self._outcomes) - len(failures)} ok, {len(failures)} failed)")
        return "\n".join(lines)

    def write_artifacts(self, output_dir: Path) -> dict[str, str]:
        """Write ``results.csv`` and ``summary.json`` and return their paths."""
        output_dir.mkdir(parents=True, exist_ok=True)
        csv_path = output_dir / "results.csv"
        self.build_dataframe().to_csv(csv_path, index=False)

        manifest = {
            "status": "ok" if self.all_ok else "failed",
            "counts": self.summaries(),
            "results_csv": str(csv_path),
            "load_runs": [
                {
                    "run_id": report.run_id,
                    "record_prefix": report.record_prefix,
                    "concurrency": report.concurrency,
                    "per_worker_iterations": report.per_worker_iterations,
                    "wall_clock_ms": report.wall_clock_ms,
                    "ok": report.ok,
                }
                for report in self._load_reports
            ],
        }
        manifest_path = output_dir / "summary.json"
        with open(manifest_path, "w", encoding="utf-8") as f:
            json.dump(manifest, f, indent=2)
        return {"results_csv": str(csv_path), "manifest": str(manifest_path)}


__all__ = ["COLUMNS", "ResultCollector"]
