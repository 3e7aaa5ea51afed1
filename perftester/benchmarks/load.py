from __future__ import annotations

import contextlib
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Protocol

from ..errors import SpawnFailed
from ..runner import ProcessHandle, ProcessResult
from ..timing import Stopwatch
from ..workloads import (
    BuildParams,
    ScenarioKind,
    WorkloadScript,
    build_script,
    load_record_names,
    worker_prefix,
)
from .config import LoadSpec
from .scenarios import STATUS_FAILED, STATUS_OK, ScenarioOutcome

LOGGER = logging.getLogger("perftester.benchmark.load")


class BatchRunner(Protocol):
    def spawn(
        self, script: WorkloadScript, label: str | None = None, output: str | None = None
    ) -> ProcessHandle: ...

    def wait(self, handle: ProcessHandle, timeout_s: float | None = None) -> ProcessResult: ...

    def terminate(self, handle: ProcessHandle) -> None: ...

    def run(self, script: WorkloadScript, label: str | None = None) -> ProcessResult: ...


@dataclass
class LoadReport:
    run_id: str
    record_prefix: str
    concurrency: int
    per_worker_iterations: int
    wall_clock_ms: float
    workers: list[ScenarioOutcome] = field(default_factory=list)
    cleanup: ScenarioOutcome | None = None
    record_names: list[str] = field(default_factory=list)

    @property
    def outcomes(self) -> list[ScenarioOutcome]:
        outcomes = list(self.workers)
        if self.cleanup is not None:
            outcomes.append(self.cleanup)
        return outcomes

    @property
    def ok(self) -> bool:
        return all(outcome.ok for outcome in self.outcomes)

    @property
    def records_per_second(self) -> float:
        if self.wall_clock_ms <= 0:
            return 0.0
        return len(self.record_names) / (self.wall_clock_ms / 1000.0)


def new_run_id() -> str:
    return uuid.uuid4().hex[:8]


def build_worker_scripts(
    record_prefix: str, context_dir: Path, concurrency: int, per_worker_iterations: int
) -> list[WorkloadScript]:
    return [
        build_script(
            ScenarioKind.LOAD_WORKER,
            BuildParams(
                iterations=per_worker_iterations,
                name_prefix=worker_prefix(record_prefix, worker),
                context_dir=context_dir,
            ),
        )
        for worker in range(concurrency)
    ]


def build_cleanup_script(record_prefix: str, context_dir: Path) -> WorkloadScript:
    return build_script(
        ScenarioKind.LOAD_CLEANUP,
        BuildParams(iterations=0, name_prefix=record_prefix, context_dir=context_dir),
    )


class LoadBatch(contextlib.AbstractContextManager["LoadBatch"]):
    """Worker processes spawned together and joined by a single barrier.

    Leaving the ``with`` block without joining kills every member that is
    still running, so no worker outlives the batch.
    """

    def __init__(self, runner: BatchRunner, output: str = "discard") -> None:
        self._runner = runner
        self._output = output
        self._handles: dict[int, ProcessHandle] = {}
        self._results: dict[int, ProcessResult] = {}

    def spawn(self, worker: int, script: WorkloadScript) -> None:
        try:
            handle = self._runner.spawn(script, label=f"worker-{worker}", output=self._output)
        except SpawnFailed as exc:
            LOGGER.error("Worker %d failed to start: %s", worker, exc)
            self._results[worker] = ProcessResult.spawn_failed(str(exc))
            return
        self._handles[worker] = handle

    @property
    def done(self) -> bool:
        return all(handle.terminal for handle in self._handles.values())

    def join(self, timeout_s: float | None = None) -> dict[int, ProcessResult]:
        """Block until every member is terminal and return results by worker index."""
        deadline = None if timeout_s is None else time.monotonic() + timeout_s
        for worker in sorted(self._handles):
            handle = self._handles[worker]
            if handle.terminal:
                continue
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            self._results[worker] = self._runner.wait(handle, timeout_s=remaining)
        return dict(sorted(self._results.items()))

    def __exit__(self, exc_type, exc, tb) -> None:
        for handle in self._handles.values():
            if not handle.terminal:
                self._runner.terminate(handle)


class LoadOrchestrator:
    """Fan out load workers, barrier-wait for all of them, then clean up."""

    def __init__(
        self,
        runner: BatchRunner,
        context_dir: Path,
        spec: LoadSpec | None = None,
        run_id: str | None = None,
        worker_output: str = "discard",
    ) -> None:
        self._runner = runner
        self._context_dir = context_dir
        self._spec = spec or LoadSpec()
        self._run_id = run_id or new_run_id()
        self._worker_output = worker_output

    @property
    def record_prefix(self) -> str:
        """Prefix owned by this run; cleanup never touches names outside it."""
        return f"{self._spec.record_prefix}{self._run_id}_"

    def build_worker_scripts(
        self, concurrency: int, per_worker_iterations: int
    ) -> list[WorkloadScript]:
        return build_worker_scripts(
            self.record_prefix, self._context_dir, concurrency, per_worker_iterations
        )

    def build_cleanup_script(self) -> WorkloadScript:
        return build_cleanup_script(self.record_prefix, self._context_dir)

    def run_load(
        self,
        concurrency: int | None = None,
        per_worker_iterations: int | None = None,
    ) -> LoadReport:
        spec = self._spec
        if concurrency is not None:
            spec = replace(spec, concurrency=concurrency)
        if per_worker_iterations is not None:
            spec = replace(spec, per_worker_iterations=per_worker_iterations)
        spec.validate()

        scripts = self.build_worker_scripts(spec.concurrency, spec.per_worker_iterations)
        cleanup_script = self.build_cleanup_script()

        LOGGER.info(
            "Starting load run %s: %d worker(s) x %d record(s), prefix %s",
            self._run_id,
            spec.concurrency,
            spec.per_worker_iterations,
            self.record_prefix,
        )

        worker_results: dict[int, ProcessResult] = {}
        cleanup_result: ProcessResult | None = None
        with Stopwatch() as watch:
            try:
                with LoadBatch(self._runner, output=self._worker_output) as batch:
                    for worker, script in enumerate(scripts):
                        batch.spawn(worker, script)
                    worker_results = batch.join(timeout_s=spec.worker_timeout_s)
            finally:
                LOGGER.info("All workers finished; cleaning up records with prefix %s", self.record_prefix)
                cleanup_result = self._runner.run(cleanup_script, label="cleanup")

        report = LoadReport(
            run_id=self._run_id,
            record_prefix=self.record_prefix,
            concurrency=spec.concurrency,
            per_worker_iterations=spec.per_worker_iterations,
            wall_clock_ms=watch.elapsed_ms,
            workers=[
                self._worker_outcome(worker, result, spec.per_worker_iterations)
                for worker, result in worker_results.items()
            ],
            cleanup=self._cleanup_outcome(cleanup_result),
            record_names=load_record_names(
                self.record_prefix, spec.concurrency, spec.per_worker_iterations
            ),
        )
        self._log_report(report)
        return report

    def _worker_outcome(
        self, worker: int, result: ProcessResult, iterations: int
    ) -> ScenarioOutcome:
        return ScenarioOutcome(
            name=f"load-worker-{worker}",
            label=f"Load worker {worker}",
            kind=ScenarioKind.LOAD_WORKER.value,
            status=STATUS_OK if result.ok else STATUS_FAILED,
            failure_kind=None if result.ok else result.outcome.value,
            elapsed_ms=result.duration_ms if result.pid is not None else None,
            iterations=iterations,
            exit_code=result.exit_code,
            worker=worker,
            detail=result.error,
        )

    def _cleanup_outcome(self, result: ProcessResult) -> ScenarioOutcome:
        return ScenarioOutcome(
            name="load-cleanup",
            label="Load cleanup",
            kind=ScenarioKind.LOAD_CLEANUP.value,
            status=STATUS_OK if result.ok else STATUS_FAILED,
            failure_kind=None if result.ok else result.outcome.value,
            elapsed_ms=result.duration_ms if result.pid is not None else None,
            exit_code=result.exit_code,
            detail=result.error,
        )

    def _log_report(self, report: LoadReport) -> None:
        for outcome in report.workers:
            if not outcome.ok:
                LOGGER.warning(
                    "   worker %d: FAILED (%s) %s",
                    outcome.worker,
                    outcome.failure_kind,
                    outcome.detail,
                )
        if report.cleanup is not None and not report.cleanup.ok:
            LOGGER.warning(
                "   cleanup FAILED (%s); records with prefix %s may remain",
                report.cleanup.failure_kind,
                report.record_prefix,
            )
        LOGGER.info("Load test completed in %.2fms", report.wall_clock_ms)


__all__ = [
    "LoadBatch",
    "LoadOrchestrator",
    "LoadReport",
    "build_cleanup_script",
    "build_worker_scripts",
    "new_run_id",
]
