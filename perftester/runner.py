from __future__ import annotations

import enum
import logging
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .errors import ChildCrashed, NonZeroExit, SpawnFailed, WorkloadTimeout
from .workloads import WorkloadScript

LOGGER = logging.getLogger("perftester.runner")
CHILD_LOGGER_NAME = "perftester.child"

DEFAULT_INTERPRETER = "php"
DEFAULT_INLINE_FLAG = "-r"
OUTPUT_MODES = ("inherit", "capture", "discard")


class ProcessState(str, enum.Enum):
    RUNNING = "running"
    EXITED = "exited"
    SIGNALED = "signaled"
    SPAWN_FAILED = "spawn_failed"
    TIMED_OUT = "timed_out"


class Outcome(str, enum.Enum):
    OK = "ok"
    NON_ZERO_EXIT = "non_zero_exit"
    CHILD_CRASHED = "child_crashed"
    TIMEOUT = "timeout"
    SPAWN_FAILED = "spawn_failed"


@dataclass
class ProcessHandle:
    pid: int
    process: subprocess.Popen
    started_ns: int
    label: str | None = None
    state: ProcessState = ProcessState.RUNNING

    @property
    def terminal(self) -> bool:
        return self.state is not ProcessState.RUNNING

    def describe(self) -> str:
        return f"{self.label or 'child'} (pid {self.pid})"


@dataclass(frozen=True)
class ProcessResult:
    outcome: Outcome
    exit_code: int | None = None
    signal: int | None = None
    duration_ms: float = 0.0
    pid: int | None = None
    output: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK

    def check(self) -> "ProcessResult":
        """Raise the error matching a failed outcome, otherwise return self."""
        if self.outcome is Outcome.OK:
            return self
        message = self.error or self.outcome.value
        if self.outcome is Outcome.NON_ZERO_EXIT:
            raise NonZeroExit(message, exit_code=self.exit_code)
        if self.outcome is Outcome.CHILD_CRASHED:
            raise ChildCrashed(message, signal=self.signal)
        if self.outcome is Outcome.TIMEOUT:
            raise WorkloadTimeout(message)
        raise SpawnFailed(message)

    @classmethod
    def spawn_failed(cls, error: str) -> "ProcessResult":
        return cls(outcome=Outcome.SPAWN_FAILED, error=error)


def configure_child_logger(log_path: Path) -> logging.Logger:
    """Send captured child output to ``log_path`` instead of the console."""
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger(CHILD_LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    handler.setFormatter(formatter)

    logger.handlers.clear()
    logger.addHandler(handler)
    return logger


def signal_name(signum: int | None) -> str:
    if signum is None:
        return "<unknown>"
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


def format_output(handle: ProcessHandle, output: str) -> str:
    lines = [f"output of {handle.describe()}:"]
    lines.extend(f"  {line}" for line in output.rstrip().splitlines())
    return "\n".join(lines)


class ProcessRunner:
    """Spawn the target interpreter with an inline program and wait for it."""

    def __init__(
        self,
        interpreter: str = DEFAULT_INTERPRETER,
        inline_flag: str = DEFAULT_INLINE_FLAG,
        timeout_s: float | None = None,
        output: str = "inherit",
        env: Optional[Mapping[str, str]] = None,
        child_logger: logging.Logger | None = None,
    ) -> None:
        if output not in OUTPUT_MODES:
            raise ValueError(f"unknown output mode {output!r}; expected one of {OUTPUT_MODES}")
        self._interpreter = interpreter
        self._inline_flag = inline_flag
        self._timeout_s = timeout_s
        self._output = output
        self._env = dict(env) if env is not None else None
        self._child_logger = child_logger or logging.getLogger(CHILD_LOGGER_NAME)

    @property
    def interpreter(self) -> str:
        return self._interpreter

    def command(self, script: WorkloadScript) -> list[str]:
        return [self._interpreter, self._inline_flag, script.body]

    def spawn(
        self,
        script: WorkloadScript,
        label: str | None = None,
        output: str | None = None,
    ) -> ProcessHandle:
        mode = output or self._output
        if mode == "capture":
            stdout, stderr = subprocess.PIPE, subprocess.STDOUT
        elif mode == "discard":
            stdout, stderr = subprocess.DEVNULL, subprocess.DEVNULL
        else:
            stdout = stderr = None

        started_ns = time.perf_counter_ns()
        try:
            process = subprocess.Popen(
                self.command(script),
                cwd=str(script.context_dir),
                env=self._env,
                stdin=subprocess.DEVNULL,
                stdout=stdout,
                stderr=stderr,
                encoding="utf-8",
                errors="replace",
            )
        except (OSError, ValueError) as exc:
            raise SpawnFailed(
                f"failed to launch {self._interpreter!r} in {script.context_dir}: {exc}"
            ) from exc

        handle = ProcessHandle(
            pid=process.pid,
            process=process,
            started_ns=started_ns,
            label=label,
        )
        LOGGER.debug("Spawned %s for %s", handle.describe(), script.kind.value)
        return handle

    def wait(self, handle: ProcessHandle, timeout_s: float | None = None) -> ProcessResult:
        """Block until the child is terminal; kill it if ``timeout_s`` elapses."""
        if handle.terminal:
            raise RuntimeError(f"{handle.describe()} has already been waited on")
        if timeout_s is None:
            timeout_s = self._timeout_s

        process = handle.process
        try:
            output, _ = process.communicate(timeout=timeout_s)
        except subprocess.TimeoutExpired:
            process.kill()
            output, _ = process.communicate()
            handle.state = ProcessState.TIMED_OUT
            self._log_output(handle, output)
            return ProcessResult(
                outcome=Outcome.TIMEOUT,
                exit_code=process.returncode,
                duration_ms=_elapsed_ms(handle),
                pid=handle.pid,
                output=output,
                error=f"{handle.describe()} exceeded {timeout_s:.1f}s and was killed",
            )

        duration_ms = _elapsed_ms(handle)
        self._log_output(handle, output)
        returncode = process.returncode

        if returncode < 0:
            handle.state = ProcessState.SIGNALED
            signum = -returncode
            return ProcessResult(
                outcome=Outcome.CHILD_CRASHED,
                signal=signum,
                duration_ms=duration_ms,
                pid=handle.pid,
                output=output,
                error=f"{handle.describe()} terminated by {signal_name(signum)}",
            )

        handle.state = ProcessState.EXITED
        if returncode != 0:
            return ProcessResult(
                outcome=Outcome.NON_ZERO_EXIT,
                exit_code=returncode,
                duration_ms=duration_ms,
                pid=handle.pid,
                output=output,
                error=f"{handle.describe()} exited with status {returncode}",
            )
        return ProcessResult(
            outcome=Outcome.OK,
            exit_code=0,
            duration_ms=duration_ms,
            pid=handle.pid,
            output=output,
        )

    def terminate(self, handle: ProcessHandle) -> None:
        """Forcefully stop a running child and reap it."""
        if handle.terminal:
            return
        if handle.process.poll() is None:
            LOGGER.warning("Killing %s", handle.describe())
            handle.process.kill()
        handle.process.communicate()
        handle.state = ProcessState.TIMED_OUT

    def run(self, script: WorkloadScript, label: str | None = None) -> ProcessResult:
        try:
            handle = self.spawn(script, label=label)
        except SpawnFailed as exc:
            LOGGER.error("%s", exc)
            return ProcessResult.spawn_failed(str(exc))
        return self.wait(handle)

    def _log_output(self, handle: ProcessHandle, output: str | None) -> None:
        if output and output.strip():
            self._child_logger.info(format_output(handle, output))


def _elapsed_ms(handle: ProcessHandle) -> float:
    return max(time.perf_counter_ns() - handle.started_ns, 0) / 1_000_000


__all__ = [
    "DEFAULT_INTERPRETER",
    "Outcome",
    "ProcessHandle",
    "ProcessResult",
    "ProcessRunner",
    "ProcessState",
    "configure_child_logger",
]
