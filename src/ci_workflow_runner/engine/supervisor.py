"""Spawn and supervise one shell process per step.

Completion is exposed as a single future carrying a `ProcessExit`, so the
executor can await it sequentially instead of wiring exit callbacks.

Each step runs in its own session. Termination is two-phase: the step's process
group and process tree get the requested signal (SIGTERM by default) and, if
the step is still alive after the grace period, SIGKILL.
Whichever comes first, natural exit or termination, decides the outcome; a
`terminate()` after the exit has been recorded is a no-op.
"""

from __future__ import annotations

import codecs
import logging
import os
import signal
import subprocess
import threading
from collections.abc import Callable, Mapping
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import psutil

from ci_workflow_runner.engine.errors import SpawnError
from ci_workflow_runner.engine.state import StepStatus

logger = logging.getLogger(__name__)

OutputCallback = Callable[[str], None]

_READ_CHUNK_SIZE = 8192


@dataclass(frozen=True, slots=True)
class ProcessExit:
    """How a step process ended.

    `signal` is set when the process was killed by a signal (no exit code then).
    `terminated` is true iff `terminate()` was accepted before the exit was seen.
    """

    exit_code: int | None
    signal: int | None = None
    terminated: bool = False


def classify_exit(outcome: ProcessExit) -> StepStatus:
    """Map a process exit to a terminal step status."""

    if outcome.exit_code == 0 and outcome.signal is None:
        return StepStatus.SUCCESS
    if outcome.terminated:
        return StepStatus.CANCELLED
    return StepStatus.FAILED


class ProcessHandle(Protocol):
    completion: Future[ProcessExit]

    @property
    def pid(self) -> int | None: ...

    def terminate(self, sig: int = signal.SIGTERM) -> bool: ...


class Supervisor(Protocol):
    def spawn(
        self,
        command: str,
        *,
        cwd: Path,
        env: Mapping[str, str],
        on_output: OutputCallback,
    ) -> ProcessHandle: ...


def _exit_from_returncode(returncode: int, *, terminated: bool) -> ProcessExit:
    # Popen reports death-by-signal as a negative return code.
    if returncode < 0:
        return ProcessExit(exit_code=None, signal=-returncode, terminated=terminated)
    return ProcessExit(exit_code=returncode, signal=None, terminated=terminated)


def _process_tree(pid: int) -> list[psutil.Process]:
    """Children first, then the parent, so no orphan outlives its shell."""

    try:
        parent = psutil.Process(pid)
        children = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        return []
    return [*reversed(children), parent]


def _signal_group(pgid: int, sig: int) -> None:
    """Signal the step's session; each step leads its own process group."""

    try:
        os.killpg(pgid, sig)
    except (ProcessLookupError, PermissionError):
        pass


class SubprocessHandle:
    """A live step process plus the thread that pumps its output."""

    def __init__(
        self,
        process: subprocess.Popen[bytes],
        *,
        on_output: OutputCallback,
        grace_seconds: float,
    ) -> None:
        self._process = process
        self._on_output = on_output
        self._grace_seconds = grace_seconds

        self._lock = threading.Lock()
        self._exited = False
        self._terminate_requested = False
        self._kill_timer: threading.Timer | None = None

        self.completion: Future[ProcessExit] = Future()

        self._reader = threading.Thread(
            target=self._pump,
            name=f"ci-step-output-{process.pid}",
            daemon=True,
        )
        self._reader.start()

    @property
    def pid(self) -> int | None:
        return self._process.pid

    def terminate(self, sig: int = signal.SIGTERM) -> bool:
        """Signal the process tree. Returns False if the process already exited."""

        with self._lock:
            if self._exited:
                return False
            first_request = not self._terminate_requested
            self._terminate_requested = True

        logger.info("Terminating step process", extra={"pid": self.pid, "signal": int(sig)})
        self._signal_tree(sig)

        if first_request and self._grace_seconds > 0:
            timer = threading.Timer(self._grace_seconds, self._kill_if_alive)
            timer.daemon = True
            with self._lock:
                if self._exited:
                    return True
                self._kill_timer = timer
            timer.start()
        elif first_request:
            self._kill_if_alive()
        return True

    def _signal_tree(self, sig: int) -> None:
        # The group reaches background children even after the shell has exited
        # and they were reparented; the tree walk covers children that left the group.
        _signal_group(self._process.pid, sig)
        for proc in _process_tree(self._process.pid):
            try:
                proc.send_signal(sig)
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue

    def _kill_if_alive(self) -> None:
        with self._lock:
            if self._exited:
                return
        logger.warning("Step process ignored termination; killing", extra={"pid": self.pid})
        self._signal_tree(signal.SIGKILL)

    def _emit(self, text: str) -> None:
        try:
            self._on_output(text)
        except Exception:
            logger.exception("Output callback failed", extra={"pid": self.pid})

    def _pump(self) -> None:
        stream = self._process.stdout
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            if stream is not None:
                while True:
                    chunk = stream.read1(_READ_CHUNK_SIZE)
                    if not chunk:
                        break
                    text = decoder.decode(chunk)
                    if text:
                        self._emit(text)
                tail = decoder.decode(b"", final=True)
                if tail:
                    self._emit(tail)
        finally:
            if stream is not None:
                stream.close()
            returncode = self._process.wait()
            with self._lock:
                self._exited = True
                terminated = self._terminate_requested
                timer = self._kill_timer
            if timer is not None:
                timer.cancel()
            outcome = _exit_from_returncode(returncode, terminated=terminated)
            logger.info(
                "Step process exited",
                extra={
                    "pid": self.pid,
                    "exit_code": outcome.exit_code,
                    "exit_signal": outcome.signal,
                    "terminated": outcome.terminated,
                },
            )
            self.completion.set_result(outcome)


class ProcessSupervisor:
    """Start step commands through the shell with stdout and stderr merged."""

    def __init__(self, *, terminate_grace_seconds: float = 2.0) -> None:
        self._terminate_grace_seconds = terminate_grace_seconds

    def spawn(
        self,
        command: str,
        *,
        cwd: Path,
        env: Mapping[str, str],
        on_output: OutputCallback,
    ) -> SubprocessHandle:
        try:
            process = subprocess.Popen(
                command,
                shell=True,
                cwd=str(cwd),
                env=dict(env),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                # One pipe for both streams keeps chunks in emission order.
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            raise SpawnError(command=command, message=str(e)) from e

        logger.info("Spawned step process", extra={"pid": process.pid, "cwd": str(cwd)})
        return SubprocessHandle(
            process,
            on_output=on_output,
            grace_seconds=self._terminate_grace_seconds,
        )
