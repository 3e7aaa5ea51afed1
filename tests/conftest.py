from __future__ import annotations

import os
import time
from pathlib import Path

import pytest

os.environ.setdefault("MPLBACKEND", "Agg")

from perftester.errors import SpawnFailed
from perftester.runner import Outcome, ProcessHandle, ProcessResult, ProcessState


def ok_result(pid: int | None = 4242) -> ProcessResult:
    return ProcessResult(outcome=Outcome.OK, exit_code=0, duration_ms=1.0, pid=pid)


def failed_result(exit_code: int = 1, pid: int | None = 4242) -> ProcessResult:
    return ProcessResult(
        outcome=Outcome.NON_ZERO_EXIT,
        exit_code=exit_code,
        duration_ms=1.0,
        pid=pid,
        error=f"child exited with status {exit_code}",
    )


class FakeRunner:
    """In-memory stand-in for ProcessRunner that records the order of events."""

    def __init__(
        self,
        results: dict[str, ProcessResult] | None = None,
        delays: dict[str, float] | None = None,
        spawn_failures: tuple[str, ...] = (),
    ) -> None:
        self.results = results or {}
        self.delays = delays or {}
        self.spawn_failures = spawn_failures
        self.events: list[tuple[str, str | None]] = []
        self.scripts: dict[str | None, object] = {}
        self.terminated: list[str | None] = []
        self._next_pid = 1000

    def run(self, script, label=None):
        self.events.append(("run", label))
        self.scripts[label] = script
        return self.results.get(label, ok_result())

    def spawn(self, script, label=None, output=None):
        if label in self.spawn_failures:
            self.events.append(("spawn_failed", label))
            raise SpawnFailed(f"cannot start {label}")
        self._next_pid += 1
        self.events.append(("spawn", label))
        self.scripts[label] = script
        return ProcessHandle(pid=self._next_pid, process=None, started_ns=0, label=label)

    def wait(self, handle, timeout_s=None):
        delay = self.delays.get(handle.label, 0.0)
        if delay:
            time.sleep(delay)
        handle.state = ProcessState.EXITED
        self.events.append(("exit", handle.label))
        return self.results.get(handle.label, ok_result(pid=handle.pid))

    def terminate(self, handle):
        handle.state = ProcessState.TIMED_OUT
        self.terminated.append(handle.label)

    def labels(self, event: str) -> list[str | None]:
        return [label for kind, label in self.events if kind == event]


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def app_root(tmp_path: Path) -> Path:
    root = tmp_path / "app"
    root.mkdir()
    return root
