from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import sys
from pathlib import Path

from ..errors import InvalidParams
from ..runner import DEFAULT_INTERPRETER, ProcessRunner, configure_child_logger
from ..workloads import DEFAULT_APP_ROOT
from .charts import render_duration_chart
from .collector import ResultCollector
from .config import (
    DEFAULT_BATCH_ITERATIONS,
    DEFAULT_RAW_ITERATIONS,
    BenchmarkPlan,
    LoadSpec,
    default_benchmark_plan,
    load_plan_file,
)
from .load import LoadOrchestrator, build_cleanup_script, build_worker_scripts
from .scenarios import ScenarioExecutor, build_scenario_script

LOGGER = logging.getLogger("perftester.benchmark")

MODES = ("all", "scenarios", "load")
DRY_RUN_ID = "00000000"


def _env_float(name: str) -> float | None:
    value = os.environ.get(name)
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid %s value %r; ignoring", name, value)
        return None


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Time workload scripts run through the target application's CLI interpreter"
    )
    parser.add_argument(
        "--app-root",
        default=os.environ.get("PERFTESTER_APP_ROOT", str(DEFAULT_APP_ROOT)),
        help="Root directory of the target application; children run with this as cwd",
    )
    parser.add_argument(
        "--interpreter",
        default=os.environ.get("PERFTESTER_INTERPRETER", DEFAULT_INTERPRETER),
        help="Interpreter executable, resolved through PATH",
    )
    parser.add_argument("--mode", choices=MODES, default=os.environ.get("PERFTESTER_MODE", "all"))
    parser.add_argument(
        "--scenario",
        action="append",
        default=[],
        help="Only run the named scenario (repeatable)",
    )
    parser.add_argument("--batch-iterations", type=int, help="Iterations of the batch round trip")
    parser.add_argument("--raw-iterations", type=int, help="Iterations of the raw store loop")
    parser.add_argument("--concurrency", type=int, help="Number of concurrent load workers")
    parser.add_argument("--load-iterations", type=int, help="Records created per load worker")
    parser.add_argument("--load-prefix", help="Name prefix of records created by the load run")
    parser.add_argument(
        "--timeout",
        type=float,
        default=_env_float("PERFTESTER_TIMEOUT_SECONDS"),
        help="Seconds before a child is killed and reported as a timeout",
    )
    parser.add_argument(
        "--capture-output",
        action="store_true",
        help="Capture child output and route it through the log instead of the terminal",
    )
    parser.add_argument(
        "--child-log",
        default=os.environ.get("PERFTESTER_CHILD_LOG"),
        help="File receiving captured child output (implies --capture-output)",
    )
    parser.add_argument(
        "--plan-path",
        default=os.environ.get("BENCHMARK_PLAN_PATH"),
        help="Optional JSON file describing a custom benchmark plan",
    )
    parser.add_argument(
        "--output-dir",
        default=os.environ.get("BENCHMARK_OUTPUT_DIR"),
        help="Directory to store benchmark artefacts (CSV, manifest and chart)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only print the planned scenarios and their scripts without executing them",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("BENCHMARK_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def load_plan(args: argparse.Namespace) -> BenchmarkPlan:
    if args.timeout is not None and args.timeout <= 0:
        raise InvalidParams(f"timeout must be positive, got {args.timeout}")
    if args.plan_path:
        plan = load_plan_file(Path(args.plan_path))
    else:
        plan = default_benchmark_plan(
            batch_iterations=(
                args.batch_iterations
                if args.batch_iterations is not None
                else DEFAULT_BATCH_ITERATIONS
            ),
            raw_iterations=(
                args.raw_iterations if args.raw_iterations is not None else DEFAULT_RAW_ITERATIONS
            ),
        )

    if args.scenario:
        plan = plan.select(args.scenario)
    if args.mode == "scenarios":
        plan = plan.without_load()
    elif args.mode == "load":
        plan = plan.without_scenarios()
        if plan.load is None:
            plan.load = LoadSpec()

    if plan.load is not None:
        overrides = {
            "concurrency": args.concurrency,
            "per_worker_iterations": args.load_iterations,
            "record_prefix": args.load_prefix,
        }
        overrides = {key: value for key, value in overrides.items() if value is not None}
        if plan.load.worker_timeout_s is None and args.timeout is not None:
            overrides["worker_timeout_s"] = args.timeout
        plan.load = dataclasses.replace(plan.load, **overrides)
        plan.load.validate()
    return plan


def resolve_app_root(value: str) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = Path.cwd() / path
    return path


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    app_root = resolve_app_root(args.app_root)
    try:
        plan = load_plan(args)
        scripts = _build_plan_scripts(plan, app_root)
    except InvalidParams as exc:
        LOGGER.error("Invalid benchmark parameters: %s", exc)
        return 2

    LOGGER.info("Application root: %s", app_root)
    LOGGER.info("Interpreter: %s", args.interpreter)

    if args.dry_run:
        _print_plan(plan, scripts)
        return 0

    child_logger = None
    if args.child_log:
        child_logger = configure_child_logger(Path(args.child_log))
    capture = args.capture_output or child_logger is not None

    runner = ProcessRunner(
        interpreter=args.interpreter,
        timeout_s=args.timeout,
        output="capture" if capture else "inherit",
        child_logger=child_logger,
    )
    collector = ResultCollector()

    if plan.scenarios:
        LOGGER.info("Running %d benchmark scenario(s)", len(plan.scenarios))
        executor = ScenarioExecutor(runner, app_root, on_outcome=collector.add_outcome)
        executor.run_all(plan.scenarios)

    if plan.load is not None:
        orchestrator = LoadOrchestrator(runner, app_root, spec=plan.load)
        collector.add_load_report(orchestrator.run_load())

    print(collector.format_summary())

    if args.output_dir:
        output_dir = Path(args.output_dir)
        artifacts = collector.write_artifacts(output_dir)
        chart_path = render_duration_chart(collector.build_dataframe(), output_dir)
        LOGGER.info("Results written to %s", artifacts["results_csv"])
        if chart_path is not None:
            LOGGER.info("Duration chart written to %s", chart_path)

    return 0 if collector.all_ok else 1


def _build_plan_scripts(plan: BenchmarkPlan, app_root: Path) -> dict[str, str]:
    """Build every scenario script up front so bad parameters fail before any spawn."""
    scripts = {spec.name: build_scenario_script(spec, app_root).body for spec in plan.scenarios}
    if plan.load is not None:
        # The real run id is drawn when the load run starts.
        record_prefix = f"{plan.load.record_prefix}{DRY_RUN_ID}_"
        worker_scripts = build_worker_scripts(
            record_prefix, app_root, plan.load.concurrency, plan.load.per_worker_iterations
        )
        for worker, script in enumerate(worker_scripts):
            scripts[f"load-worker-{worker}"] = script.body
        scripts["load-cleanup"] = build_cleanup_script(record_prefix, app_root).body
    return scripts


def _print_plan(plan: BenchmarkPlan, scripts: dict[str, str]) -> None:
    for spec in plan:
        print(f"Scenario: {spec.name} ({spec.label}) kind={spec.kind.value} iterations={spec.iterations}")
    if plan.load is not None:
        print(
            f"Load: concurrency={plan.load.concurrency} "
            f"per_worker_iterations={plan.load.per_worker_iterations} "
            f"record_prefix={plan.load.record_prefix} "
            f"timeout={plan.load.worker_timeout_s}"
        )
    for name, body in scripts.items():
        print(f"--- {name}")
        for line in body.splitlines():
            print(f"    {line}")


if __name__ == "__main__":
    sys.exit(main())
