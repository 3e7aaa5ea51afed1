from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from ..errors import HarnessError
from ..runner import ProcessResult
from ..timing import measure
from ..workloads import BuildParams, ScenarioKind, WorkloadScript, build_script
from .config import ScenarioSpec

LOGGER = logging.getLogger("perftester.benchmark.scenarios")

STATUS_OK = "ok"
STATUS_FAILED = "failed"


class ScriptRunner(Protocol):
    def run(self, script: WorkloadScript, label: str | None = None) -> ProcessResult: ...


@dataclass
class ScenarioOutcome:
    name: str
    label: str
    kind: str
    status: str
    failure_kind: str | None = None
    elapsed_ms: float | None = None
    iterations: int | None = None
    average_ms: float | None = None
    exit_code: int | None = None
    worker: int | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


def build_scenario_script(spec: ScenarioSpec, context_dir: Path) -> WorkloadScript:
    return build_script(
        spec.kind,
        BuildParams(
            iterations=spec.iterations,
            name_prefix=spec.name_prefix,
            context_dir=context_dir,
            collection=spec.collection,
        ),
    )


def outcome_from_result(
    spec: ScenarioSpec, result: ProcessResult, elapsed_ms: float
) -> ScenarioOutcome:
    outcome = ScenarioOutcome(
        name=spec.name,
        label=spec.label,
        kind=spec.kind.value,
        status=STATUS_OK if result.ok else STATUS_FAILED,
        failure_kind=None if result.ok else result.outcome.value,
        exit_code=result.exit_code,
        detail=result.error,
    )
    if spec.kind is ScenarioKind.CONNECTIVITY:
        outcome.detail = "connected" if result.ok else result.error or "ping failed"
        return outcome

    outcome.elapsed_ms = elapsed_ms
    if spec.reports_average:
        outcome.iterations = spec.iterations
        outcome.average_ms = elapsed_ms / spec.iterations if spec.iterations > 0 else None
    else:
        outcome.iterations = 1
    return outcome


class ScenarioExecutor:
    """Run catalogue scenarios one after another, never aborting on a failure."""

    def __init__(
        self,
        runner: ScriptRunner,
        context_dir: Path,
        on_outcome: Callable[[ScenarioOutcome], None] | None = None,
    ) -> None:
        self._runner = runner
        self._context_dir = context_dir
        self._on_outcome = on_outcome

    def build(self, spec: ScenarioSpec) -> WorkloadScript:
        return build_scenario_script(spec, self._context_dir)

    def run_scenario(self, spec: ScenarioSpec) -> ScenarioOutcome:
        try:
            script = self.build(spec)
        except HarnessError as exc:
            LOGGER.error("Scenario %s rejected: %s", spec.name, exc)
            return ScenarioOutcome(
                name=spec.name,
                label=spec.label,
                kind=spec.kind.value,
                status=STATUS_FAILED,
                failure_kind=exc.kind,
                detail=str(exc),
            )

        result, elapsed_ms = measure(self._runner.run, script, label=spec.name)
        outcome = outcome_from_result(spec, result, elapsed_ms)
        self._log_outcome(outcome)
        return outcome

    def run_all(self, specs: Iterable[ScenarioSpec]) -> list[ScenarioOutcome]:
        outcomes: list[ScenarioOutcome] = []
        for position, spec in enumerate(specs, start=1):
            LOGGER.info("%d. Running %s...", position, spec.label)
            outcome = self.run_scenario(spec)
            outcomes.append(outcome)
            if self._on_outcome is not None:
                self._on_outcome(outcome)
        return outcomes

    def _log_outcome(self, outcome: ScenarioOutcome) -> None:
        if outcome.kind == ScenarioKind.CONNECTIVITY.value:
            if outcome.ok:
                LOGGER.info("   %s: connected", outcome.name)
            else:
                LOGGER.warning("   %s: FAILED (%s) %s", outcome.name, outcome.failure_kind, outcome.detail)
            return
        if not outcome.ok:
            LOGGER.warning(
                "   %s: FAILED (%s) after %.2fms: %s",
                outcome.name,
                outcome.failure_kind,
                outcome.elapsed_ms or 0.0,
                outcome.detail,
            )
            return
        if outcome.average_ms is not None:
            LOGGER.info(
                "   %s: %.2fms total, %.2fms per iteration (%d iterations)",
                outcome.name,
                outcome.elapsed_ms,
                outcome.average_ms,
                outcome.iterations,
            )
        else:
            LOGGER.info("   %s: %.2fms", outcome.name, outcome.elapsed_ms)


__all__ = [
    "STATUS_FAILED",
    "STATUS_OK",
    "ScenarioExecutor",
    "ScenarioOutcome",
    "build_scenario_script",
    "outcome_from_result",
]
