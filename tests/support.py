"""Fakes and helpers shared by the unit tests."""

from __future__ import annotations

import signal
import threading
import time
from collections.abc import Callable, Mapping
from concurrent.futures import Future
from pathlib import Path

from ci_workflow_runner.engine.errors import SpawnError
from ci_workflow_runner.engine.supervisor import ProcessExit

WORKFLOW_YAML = """
name: Test Workflow
jobs:
  build:
    runs-on: ubuntu-latest
    steps:
      - name: Run tests
        run: echo "running"
"""

WORKFLOW_WITH_WORKDIR = """
name: Test Workflow
jobs:
  build:
    runs-on: ubuntu-latest
    steps:
      - name: Run tests
        run: echo "running"
        working-directory: subdir
"""

TWO_JOB_WORKFLOW = """
name: Pipeline
jobs:
  build:
    runs-on: ubuntu-latest
    steps:
      - name: Install
        run: make install
      - name: Compile
        run: make build
  test:
    runs-on: ubuntu-latest
    needs: build
    steps:
      - name: Unit
        run: make test
"""


class FakeProcess:
    """A step process driven by the test instead of the OS."""

    pid = 4242

    def __init__(
        self, command: str, cwd: Path, env: Mapping[str, str], on_output: Callable[[str], None]
    ) -> None:
        self.command = command
        self.cwd = cwd
        self.env = dict(env)
        self._on_output = on_output
        self.completion: Future[ProcessExit] = Future()
        self.terminate_calls: list[int] = []
        # Behave like a process whose exit is already on its way.
        self.ignore_terminate = False

    def emit_stdout(self, text: str) -> None:
        self._on_output(text)

    emit_stderr = emit_stdout

    def emit_close(self, code: int | None = 0, sig: int | None = None) -> None:
        if not self.completion.done():
            self.completion.set_result(ProcessExit(exit_code=code, signal=sig))

    def terminate(self, sig: int = signal.SIGTERM) -> bool:
        if self.completion.done():
            return False
        self.terminate_calls.append(int(sig))
        if self.ignore_terminate:
            return False
        self.completion.set_result(ProcessExit(exit_code=None, signal=int(sig), terminated=True))
        return True


class FakeSupervisor:
    def __init__(self) -> None:
        self.processes: list[FakeProcess] = []
        self.spawn_error: str | None = None
        self._cond = threading.Condition()

    def spawn(
        self,
        command: str,
        *,
        cwd: Path,
        env: Mapping[str, str],
        on_output: Callable[[str], None],
    ) -> FakeProcess:
        if self.spawn_error is not None:
            raise SpawnError(command=command, message=self.spawn_error)
        process = FakeProcess(command, cwd, env, on_output)
        with self._cond:
            self.processes.append(process)
            self._cond.notify_all()
        return process

    def wait_for_process(self, index: int = 0, timeout: float = 2.0) -> FakeProcess:
        with self._cond:
            if not self._cond.wait_for(lambda: len(self.processes) > index, timeout=timeout):
                raise AssertionError(f"process #{index} was never spawned")
            return self.processes[index]


def write_workflow(project_dir: Path, content: str, name: str = "ci.yml") -> Path:
    path = project_dir / ".github" / "workflows" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.01)
    raise AssertionError("condition not reached before timeout")
