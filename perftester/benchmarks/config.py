from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Iterable, Iterator

from ..errors import InvalidParams
from ..workloads import DEFAULT_COLLECTION, ScenarioKind

DEFAULT_BATCH_ITERATIONS = 50
DEFAULT_RAW_ITERATIONS = 20
DEFAULT_LOAD_CONCURRENCY = 3
DEFAULT_LOAD_ITERATIONS = 10
DEFAULT_LOAD_PREFIX = "loaduser_"

# Execution order of a full run.
SCENARIO_ORDER: tuple[ScenarioKind, ...] = (
    ScenarioKind.CONNECTIVITY,
    ScenarioKind.SINGLE_ROUND_TRIP,
    ScenarioKind.BATCH_ROUND_TRIP,
    ScenarioKind.RAW_STORE_LOOP,
)


@dataclass(frozen=True)
class ScenarioSpec:
    """One entry of the benchmark catalogue."""

    name: str
    kind: ScenarioKind
    label: str
    iterations: int = 1
    name_prefix: str = "perftest"
    collection: str = DEFAULT_COLLECTION

    @property
    def timed(self) -> bool:
        return self.kind is not ScenarioKind.CONNECTIVITY

    @property
    def reports_average(self) -> bool:
        return self.kind in (ScenarioKind.BATCH_ROUND_TRIP, ScenarioKind.RAW_STORE_LOOP)


@dataclass(frozen=True)
class LoadSpec:
    """Parameters of the concurrent load run."""

    concurrency: int = DEFAULT_LOAD_CONCURRENCY
    per_worker_iterations: int = DEFAULT_LOAD_ITERATIONS
    record_prefix: str = DEFAULT_LOAD_PREFIX
    worker_timeout_s: float | None = None

    def validate(self) -> None:
        if isinstance(self.concurrency, bool) or not isinstance(self.concurrency, int):
            raise InvalidParams(f"concurrency must be an integer, got {self.concurrency!r}")
        if self.concurrency < 1:
            raise InvalidParams(f"concurrency must be positive, got {self.concurrency}")
        iterations = self.per_worker_iterations
        if isinstance(iterations, bool) or not isinstance(iterations, int):
            raise InvalidParams(f"per-worker iterations must be an integer, got {iterations!r}")
        if iterations < 0:
            raise InvalidParams(f"per-worker iterations must be >= 0, got {iterations}")
        if not isinstance(self.record_prefix, str) or not self.record_prefix:
            raise InvalidParams(f"load record prefix must be a non-empty string, got {self.record_prefix!r}")
        timeout = self.worker_timeout_s
        if timeout is not None:
            if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
                raise InvalidParams(f"worker timeout must be a number of seconds, got {timeout!r}")
            if timeout <= 0:
                raise InvalidParams(f"worker timeout must be positive, got {timeout}")


@dataclass
class BenchmarkPlan:
    """Scenarios executed in order, followed by an optional load run."""

    scenarios: list[ScenarioSpec] = field(default_factory=list)
    load: LoadSpec | None = None

    def __iter__(self) -> Iterator[ScenarioSpec]:
        return iter(self.scenarios)

    def select(self, names: Iterable[str]) -> "BenchmarkPlan":
        wanted = set(names)
        unknown = wanted - {spec.name for spec in self.scenarios}
        if unknown:
            raise InvalidParams(f"unknown scenario(s): {', '.join(sorted(unknown))}")
        return BenchmarkPlan(
            scenarios=[spec for spec in self.scenarios if spec.name in wanted],
            load=self.load,
        )

    def without_load(self) -> "BenchmarkPlan":
        return BenchmarkPlan(scenarios=list(self.scenarios), load=None)

    def without_scenarios(self) -> "BenchmarkPlan":
        return BenchmarkPlan(scenarios=[], load=self.load)


def default_benchmark_plan(
    batch_iterations: int = DEFAULT_BATCH_ITERATIONS,
    raw_iterations: int = DEFAULT_RAW_ITERATIONS,
    load: LoadSpec | None = None,
) -> BenchmarkPlan:
    """Return the fixed scenario catalogue followed by the default load run."""

    scenarios = [
        ScenarioSpec(
            name="connectivity",
            kind=ScenarioKind.CONNECTIVITY,
            label="Store connectivity",
            iterations=0,
        ),
        ScenarioSpec(
            name="single-round-trip",
            kind=ScenarioKind.SINGLE_ROUND_TRIP,
            label="Single create/delete round trip",
            name_prefix="perftest",
        ),
        ScenarioSpec(
            name="batch-round-trip",
            kind=ScenarioKind.BATCH_ROUND_TRIP,
            label=f"Batch create/delete round trip x{batch_iterations}",
            iterations=batch_iterations,
            name_prefix="batchuser",
        ),
        ScenarioSpec(
            name="raw-store-loop",
            kind=ScenarioKind.RAW_STORE_LOOP,
            label=f"Raw collection insert/delete x{raw_iterations}",
            iterations=raw_iterations,
            name_prefix="data",
        ),
    ]
    return BenchmarkPlan(scenarios=scenarios, load=load or LoadSpec())


def plan_from_dict(payload: dict[str, Any]) -> BenchmarkPlan:
    """Build a plan from a decoded JSON document.

    The document holds a ``scenarios`` list (each with ``kind`` and optional
    ``name``, ``label``, ``iterations``, ``name_prefix``, ``collection``) and an
    optional ``load`` object mirroring :class:`LoadSpec`. Scenarios keep the
    catalogue order regardless of their position in the file.
    """
    defaults = {spec.kind: spec for spec in default_benchmark_plan().scenarios}
    entries = payload.get("scenarios", [])
    if not isinstance(entries, list):
        raise InvalidParams(f"'scenarios' must be a list, got {entries!r}")
    scenarios: list[ScenarioSpec] = []
    for entry in entries:
        if not isinstance(entry, dict) or "kind" not in entry:
            raise InvalidParams(f"scenario entries need a 'kind': {entry!r}")
        try:
            kind = ScenarioKind(entry["kind"])
        except ValueError as exc:
            raise InvalidParams(f"unknown scenario kind {entry['kind']!r}") from exc
        if kind not in SCENARIO_ORDER:
            raise InvalidParams(f"{kind.value} cannot be used as a benchmark scenario")
        overrides = {
            key: entry[key]
            for key in ("name", "label", "iterations", "name_prefix", "collection")
            if key in entry
        }
        scenarios.append(replace(defaults[kind], **overrides))
    scenarios.sort(key=lambda spec: SCENARIO_ORDER.index(spec.kind))

    load_payload = payload.get("load")
    load = None
    if load_payload is not None:
        try:
            load = LoadSpec(**load_payload)
        except TypeError as exc:
            raise InvalidParams(f"invalid load section: {exc}") from exc
        load.validate()
    return BenchmarkPlan(scenarios=scenarios, load=load)


def load_plan_file(path: Path) -> BenchmarkPlan:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise InvalidParams(f"unable to read benchmark plan {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise InvalidParams(f"benchmark plan {path} must be a JSON object")
    return plan_from_dict(payload)
