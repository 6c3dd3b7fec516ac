"""In-memory run tracking.

Each run is wrapped in a `RunRecord` with its own lock, so polling one run never
waits on another. The store-level lock only guards the id -> record map.

Runs live for the lifetime of the process. Finished runs beyond
`max_history` are evicted oldest-first; running runs are never evicted.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from ci_workflow_runner.engine.errors import RunNotFound
from ci_workflow_runner.engine.models import Run
from ci_workflow_runner.engine.state import RunStatus, is_terminal
from ci_workflow_runner.engine.supervisor import ProcessHandle

logger = logging.getLogger(__name__)


class RunRecord:
    """A run plus the live state needed to cancel it.

    Only the run's executor mutates the `Run` (through `edit()`); everyone else
    reads deep-copied snapshots.
    """

    def __init__(self, run: Run) -> None:
        self._run = run
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._finished = threading.Event()
        self._process: ProcessHandle | None = None

    @property
    def id(self) -> str:
        return self._run.id

    @property
    def project(self) -> str:
        return self._run.project

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def is_terminal(self) -> bool:
        with self._lock:
            return is_terminal(self._run.status)

    def snapshot(self) -> Run:
        with self._lock:
            return self._run.model_copy(
                update={"cancel_requested": self._cancel.is_set()}, deep=True
            )

    @contextmanager
    def edit(self) -> Iterator[Run]:
        with self._lock:
            yield self._run

    def attach_process(self, handle: ProcessHandle) -> bool:
        """Publish the live process. Returns True if a cancel is already pending."""

        with self._lock:
            self._process = handle
            return self._cancel.is_set()

    def detach_process(self) -> None:
        with self._lock:
            self._process = None

    def request_cancel(self) -> bool:
        """Flag the run for cancellation and terminate its live process.

        Returns False when the run is already terminal.
        """

        with self._lock:
            if is_terminal(self._run.status):
                return False
            self._cancel.set()
            handle = self._process
        if handle is not None:
            handle.terminate()
        return True

    def mark_finished(self) -> None:
        self._finished.set()

    def wait_finished(self, timeout: float | None = None) -> bool:
        return self._finished.wait(timeout)


class RunStore:
    def __init__(self, *, max_history: int = 200, cancel_wait_seconds: float = 5.0) -> None:
        self._max_history = max_history
        self._cancel_wait_seconds = cancel_wait_seconds
        self._lock = threading.Lock()
        # Insertion order is creation order.
        self._records: dict[str, RunRecord] = {}

    def create(self, record: RunRecord) -> Run:
        with self._lock:
            if record.id in self._records:
                raise ValueError(f"Duplicate run id: {record.id}")
            self._records[record.id] = record
            self._evict_unlocked()
        return record.snapshot()

    def record(self, run_id: str) -> RunRecord:
        with self._lock:
            record = self._records.get(run_id)
        if record is None:
            raise RunNotFound(run_id)
        return record

    def get(self, run_id: str) -> Run:
        return self.record(run_id).snapshot()

    def cancel(self, run_id: str) -> Run:
        """Cancel a running run; a finished run is returned unchanged."""

        record = self.record(run_id)
        if record.request_cancel():
            logger.info("Run cancellation requested", extra={"run_id": run_id})
            if not record.wait_finished(self._cancel_wait_seconds):
                logger.warning(
                    "Run did not finish within cancel wait",
                    extra={"run_id": run_id, "wait_seconds": self._cancel_wait_seconds},
                )
        return record.snapshot()

    def list_history(self, limit: int | None = None, *, project: str | None = None) -> list[Run]:
        """Most recent first."""

        runs = [r.snapshot() for r in reversed(self._all())]
        if project is not None:
            runs = [r for r in runs if r.project == project]
        if limit is not None:
            runs = runs[: max(limit, 0)]
        return runs

    def list_active(self) -> list[Run]:
        runs = [r.snapshot() for r in self._all()]
        return [r for r in runs if r.status is RunStatus.RUNNING]

    def list_for_project(self, project: str) -> list[Run]:
        return self.list_history(project=project)

    def clear_finished(self, project: str) -> int:
        """Drop finished runs of a project. Returns how many were removed."""

        with self._lock:
            doomed = [
                run_id
                for run_id, record in self._records.items()
                if record.project == project and record.is_terminal()
            ]
            for run_id in doomed:
                del self._records[run_id]
        return len(doomed)

    def _all(self) -> list[RunRecord]:
        with self._lock:
            return list(self._records.values())

    def _evict_unlocked(self) -> None:
        finished = [run_id for run_id, r in self._records.items() if r.is_terminal()]
        overflow = len(finished) - self._max_history
        for run_id in finished[: max(overflow, 0)]:
            del self._records[run_id]
            logger.debug("Evicted finished run", extra={"run_id": run_id})
