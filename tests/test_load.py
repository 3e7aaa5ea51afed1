from __future__ import annotations

import sys

import pytest

from conftest import FakeRunner, failed_result
from perftester.benchmarks.config import LoadSpec
from perftester.benchmarks.load import LoadBatch, LoadOrchestrator
from perftester.errors import InvalidParams
from perftester.runner import Outcome, ProcessRunner
from perftester.workloads import ScenarioKind, WorkloadScript


def orchestrator(runner, app_root, **spec_kwargs) -> LoadOrchestrator:
    return LoadOrchestrator(runner, app_root, spec=LoadSpec(**spec_kwargs), run_id="run42")


def test_all_workers_spawn_before_any_is_awaited(fake_runner, app_root):
    orchestrator(fake_runner, app_root, concurrency=3, per_worker_iterations=10).run_load()
    kinds = [kind for kind, _ in fake_runner.events]
    assert kinds[:3] == ["spawn", "spawn", "spawn"]
    assert kinds[3:6] == ["exit", "exit", "exit"]
    assert fake_runner.events[-1] == ("run", "cleanup")


def test_cleanup_waits_for_delayed_worker(app_root):
    runner = FakeRunner(delays={"worker-2": 0.2})
    report = orchestrator(runner, app_root, concurrency=3, per_worker_iterations=10).run_load()

    events = runner.events
    assert events.index(("exit", "worker-2")) < events.index(("run", "cleanup"))
    assert runner.labels("run") == ["cleanup"]
    assert report.ok
    assert report.wall_clock_ms >= 200


def test_record_names_are_disjoint_and_tagged_with_run_id(fake_runner, app_root):
    report = orchestrator(fake_runner, app_root, concurrency=3, per_worker_iterations=10).run_load()
    assert report.record_prefix == "loaduser_run42_"
    assert len(report.record_names) == 30
    assert len(set(report.record_names)) == 30
    assert all(name.startswith("loaduser_run42_") for name in report.record_names)

    bodies = [fake_runner.scripts[f"worker-{worker}"].body for worker in range(3)]
    for worker, body in enumerate(bodies):
        assert f"$prefix = 'loaduser_run42_{worker}_';" in body
        assert "$j < 10;" in body
    cleanup = fake_runner.scripts["cleanup"]
    assert cleanup.kind is ScenarioKind.LOAD_CLEANUP
    assert "$prefix = 'loaduser_run42_';" in cleanup.body


def test_cleanup_runs_even_when_workers_fail(app_root):
    runner = FakeRunner(
        results={"worker-1": failed_result(exit_code=2)},
        spawn_failures=("worker-0",),
    )
    report = orchestrator(runner, app_root, concurrency=3, per_worker_iterations=5).run_load()

    assert runner.labels("run") == ["cleanup"]
    assert not report.ok
    by_worker = {outcome.worker: outcome for outcome in report.workers}
    assert by_worker[0].failure_kind == "spawn_failed"
    assert by_worker[0].elapsed_ms is None
    assert by_worker[1].failure_kind == "non_zero_exit"
    assert by_worker[2].ok
    assert report.cleanup.ok


def test_failed_cleanup_is_reported(app_root):
    runner = FakeRunner(results={"cleanup": failed_result()})
    report = orchestrator(runner, app_root, concurrency=1, per_worker_iterations=1).run_load()
    assert not report.cleanup.ok
    assert not report.ok
    assert all(outcome.ok for outcome in report.workers)


def test_run_load_arguments_override_spec(fake_runner, app_root):
    report = orchestrator(fake_runner, app_root).run_load(concurrency=5, per_worker_iterations=2)
    assert report.concurrency == 5
    assert len(report.workers) == 5
    assert len(report.record_names) == 10


@pytest.mark.parametrize("concurrency,iterations", [(0, 1), (-1, 1), (2, -1)])
def test_invalid_load_parameters_spawn_nothing(fake_runner, app_root, concurrency, iterations):
    with pytest.raises(InvalidParams):
        orchestrator(fake_runner, app_root).run_load(concurrency, iterations)
    assert fake_runner.events == []


def test_batch_kills_unjoined_members_on_exit(fake_runner, app_root):
    script = WorkloadScript(kind=ScenarioKind.LOAD_WORKER, body="", context_dir=app_root)
    with pytest.raises(KeyboardInterrupt):
        with LoadBatch(fake_runner) as batch:
            batch.spawn(0, script)
            batch.spawn(1, script)
            raise KeyboardInterrupt
    assert fake_runner.terminated == ["worker-0", "worker-1"]
    assert batch.done


def test_orchestrator_cleans_up_when_interrupted(app_root):
    class InterruptingRunner(FakeRunner):
        def wait(self, handle, timeout_s=None):
            raise KeyboardInterrupt

    runner = InterruptingRunner()
    with pytest.raises(KeyboardInterrupt):
        orchestrator(runner, app_root, concurrency=2, per_worker_iterations=1).run_load()
    assert runner.terminated == ["worker-0", "worker-1"]
    assert runner.labels("run") == ["cleanup"]


def test_batch_barrier_with_real_processes(tmp_path):
    runner = ProcessRunner(interpreter=sys.executable, inline_flag="-c")
    durations = [0.3, 0.0, 0.1]
    with LoadBatch(runner) as batch:
        for worker, delay in enumerate(durations):
            body = (
                "import pathlib, time; "
                f"time.sleep({delay}); "
                f"pathlib.Path('worker-{worker}.done').write_text('ok')"
            )
            batch.spawn(worker, WorkloadScript(ScenarioKind.LOAD_WORKER, body, tmp_path))
        results = batch.join()

    assert batch.done
    assert sorted(results) == [0, 1, 2]
    assert all(result.outcome is Outcome.OK for result in results.values())
    assert sorted(path.name for path in tmp_path.glob("*.done")) == [
        "worker-0.done",
        "worker-1.done",
        "worker-2.done",
    ]


def test_batch_deadline_times_out_slow_worker(tmp_path):
    runner = ProcessRunner(interpreter=sys.executable, inline_flag="-c")
    with LoadBatch(runner) as batch:
        batch.spawn(0, WorkloadScript(ScenarioKind.LOAD_WORKER, "pass", tmp_path))
        batch.spawn(1, WorkloadScript(ScenarioKind.LOAD_WORKER, "import time; time.sleep(30)", tmp_path))
        results = batch.join(timeout_s=1.0)
    assert results[0].ok
    assert results[1].outcome is Outcome.TIMEOUT
