"""Drive a run's execution plan on a background thread.

One thread per run; the steps of a run execute strictly one after another
because shell steps usually depend on what earlier steps left on disk. Distinct
runs proceed independently.

The first failed or cancelled step stops the run. Steps after it stay `pending`:
they never ran, so nothing is retroactively cancelled.
"""

from __future__ import annotations

import logging
import os
import threading
import uuid
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from ci_workflow_runner.engine.definition import WorkflowDefinition
from ci_workflow_runner.engine.errors import InvalidWorkingDirectory, SpawnError
from ci_workflow_runner.engine.loader import WORKFLOWS_DIR, list_workflows, parse_workflow
from ci_workflow_runner.engine.models import (
    JobResult,
    Run,
    StepResult,
    WorkflowSummary,
    utc_iso_now,
)
from ci_workflow_runner.engine.paths import ProjectResolver, resolve_working_directory
from ci_workflow_runner.engine.run_store import RunRecord, RunStore
from ci_workflow_runner.engine.selector import PlannedStep, build_plan, group_by_job
from ci_workflow_runner.engine.state import (
    RunStatus,
    StepStatus,
    advance_run,
    advance_step,
    is_terminal,
)
from ci_workflow_runner.engine.supervisor import ProcessExit, Supervisor, classify_exit

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Step cancelled by user"


@dataclass(frozen=True, slots=True)
class _Slot:
    """Where a planned step lives inside `Run.jobs`."""

    planned: PlannedStep
    job_index: int
    step_index: int
    last_in_job: bool


def merge_environment(
    overrides: Mapping[str, object] | None, base: Mapping[str, str] | None = None
) -> dict[str, str]:
    """Overlay request-supplied variables on the service's own environment."""

    env = dict(os.environ if base is None else base)
    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            env[str(key)] = "true" if value else "false"
        else:
            env[str(key)] = str(value)
    return env


def _outcome_message(status: StepStatus, outcome: ProcessExit) -> str | None:
    """Trailing line that explains a step that did not succeed."""

    if status is StepStatus.CANCELLED:
        return CANCELLED_MESSAGE
    if status is not StepStatus.FAILED:
        return None
    if outcome.exit_code is not None:
        return f"Command failed with exit code {outcome.exit_code}"
    return f"Command terminated by signal {outcome.signal}"


def _append_line(output: str, line: str) -> str:
    if not output:
        return line
    separator = "" if output.endswith("\n") else "\n"
    return f"{output}{separator}{line}"


def _new_run(
    *,
    run_id: str,
    project: str,
    workflow_file: str,
    definition: WorkflowDefinition,
    plan: Sequence[PlannedStep],
) -> tuple[Run, list[_Slot]]:
    jobs: list[JobResult] = []
    slots: list[_Slot] = []
    for job_index, (job_id, job_name, planned_steps) in enumerate(group_by_job(plan)):
        jobs.append(
            JobResult(
                id=job_id,
                name=job_name,
                steps=[StepResult(id=p.step.id, name=p.step.name) for p in planned_steps],
            )
        )
        for step_index, planned in enumerate(planned_steps):
            slots.append(
                _Slot(
                    planned=planned,
                    job_index=job_index,
                    step_index=step_index,
                    last_in_job=step_index == len(planned_steps) - 1,
                )
            )
    run = Run(
        id=run_id,
        project=project,
        workflow_file=workflow_file,
        workflow_name=definition.name,
        status=RunStatus.RUNNING,
        started_at=utc_iso_now(),
        jobs=jobs,
    )
    return run, slots


class RunExecutor:
    def __init__(
        self,
        *,
        store: RunStore,
        resolver: ProjectResolver,
        supervisor: Supervisor,
        workflows_dir: Path = WORKFLOWS_DIR,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._supervisor = supervisor
        self._workflows_dir = workflows_dir

    @property
    def store(self) -> RunStore:
        return self._store

    def list_workflows(self, project: str) -> list[WorkflowSummary]:
        project_dir = self._resolver.resolve(project)
        return list_workflows(project_dir, workflows_dir=self._workflows_dir)

    def describe_workflow(self, project: str, workflow_file: str) -> WorkflowDefinition:
        project_dir = self._resolver.resolve(project)
        return parse_workflow(project_dir, workflow_file, workflows_dir=self._workflows_dir)

    def start_run(
        self,
        *,
        project: str,
        workflow_file: str,
        selected_steps: Iterable[str] | None,
        env: Mapping[str, object] | None = None,
    ) -> Run:
        """Validate, register and start a run; returns without waiting for steps.

        Raises `PathError` / `WorkflowParseError` before anything is stored.
        """

        project_dir = self._resolver.resolve(project)
        definition = parse_workflow(project_dir, workflow_file, workflows_dir=self._workflows_dir)
        plan = build_plan(definition, selected_steps)

        run_id = f"run-{uuid.uuid4().hex}"
        run, slots = _new_run(
            run_id=run_id,
            project=project,
            workflow_file=workflow_file,
            definition=definition,
            plan=plan,
        )
        record = RunRecord(run)
        self._store.create(record)
        logger.info(
            "Run created",
            extra={
                "run_id": run_id,
                "project": project,
                "workflow_file": workflow_file,
                "planned_steps": len(slots),
            },
        )

        if not slots:
            self._finish(record, RunStatus.SUCCESS)
            record.mark_finished()
            return record.snapshot()

        thread = threading.Thread(
            target=self._execute,
            name=f"ci-run-{run_id}",
            daemon=True,
            kwargs={
                "record": record,
                "slots": slots,
                "project_dir": project_dir,
                "env": merge_environment(env),
            },
        )
        thread.start()
        return record.snapshot()

    def _execute(
        self,
        *,
        record: RunRecord,
        slots: Sequence[_Slot],
        project_dir: Path,
        env: Mapping[str, str],
    ) -> None:
        try:
            for slot in slots:
                if record.cancel_requested:
                    self._finish(record, RunStatus.CANCELLED)
                    return

                status = self._run_step(record, slot, project_dir, env)
                if status is StepStatus.FAILED:
                    self._finish(record, RunStatus.FAILED)
                    return
                if status is StepStatus.CANCELLED:
                    self._finish(record, RunStatus.CANCELLED)
                    return

            self._finish(record, RunStatus.SUCCESS)

        except Exception as e:
            logger.exception("Run execution failed", extra={"run_id": record.id})
            self._finish(record, RunStatus.FAILED, error=str(e))
        finally:
            record.mark_finished()

    def _run_step(
        self, record: RunRecord, slot: _Slot, project_dir: Path, env: Mapping[str, str]
    ) -> StepStatus:
        step_def = slot.planned.step
        command = step_def.run
        if command is None:
            raise ValueError(f"Step {step_def.id} has no run command")

        with record.edit() as run:
            job = run.jobs[slot.job_index]
            step = job.steps[slot.step_index]
            step.status = advance_step(step.status, StepStatus.RUNNING)
            step.started_at = utc_iso_now()
            if job.status is StepStatus.PENDING:
                job.status = advance_step(job.status, StepStatus.RUNNING)

        logger.info(
            "Step started",
            extra={"run_id": record.id, "step_id": step_def.id, "job_id": slot.planned.job_id},
        )

        try:
            cwd = resolve_working_directory(project_dir, step_def.working_directory)
            handle = self._supervisor.spawn(
                command,
                cwd=cwd,
                env=env,
                on_output=lambda chunk: self._append_output(record, slot, chunk),
            )
        except (InvalidWorkingDirectory, SpawnError) as e:
            logger.warning(
                "Step could not start",
                extra={"run_id": record.id, "step_id": step_def.id, "reason": str(e)},
            )
            self._complete_step(record, slot, StepStatus.FAILED, exit_code=None, message=str(e))
            return StepStatus.FAILED

        if record.attach_process(handle):
            # Cancelled between spawn and attach.
            handle.terminate()
        try:
            outcome = handle.completion.result()
        finally:
            record.detach_process()

        status = classify_exit(outcome)
        message = _outcome_message(status, outcome)
        self._complete_step(record, slot, status, exit_code=outcome.exit_code, message=message)
        logger.info(
            "Step finished",
            extra={
                "run_id": record.id,
                "step_id": step_def.id,
                "status": status.value,
                "exit_code": outcome.exit_code,
            },
        )
        return status

    def _append_output(self, record: RunRecord, slot: _Slot, chunk: str) -> None:
        with record.edit() as run:
            step = run.jobs[slot.job_index].steps[slot.step_index]
            if step.status is StepStatus.RUNNING:
                step.output += chunk

    def _complete_step(
        self,
        record: RunRecord,
        slot: _Slot,
        status: StepStatus,
        *,
        exit_code: int | None,
        message: str | None = None,
    ) -> None:
        with record.edit() as run:
            job = run.jobs[slot.job_index]
            step = job.steps[slot.step_index]
            if message:
                step.output = _append_line(step.output, message)
            step.exit_code = exit_code
            step.status = advance_step(step.status, status)
            step.completed_at = utc_iso_now()

            if status is not StepStatus.SUCCESS or slot.last_in_job:
                job.status = advance_step(job.status, status)

    def _finish(self, record: RunRecord, status: RunStatus, *, error: str | None = None) -> None:
        with record.edit() as run:
            if is_terminal(run.status):
                return
            run.status = advance_run(run.status, status)
            run.completed_at = utc_iso_now()
            if error is not None:
                run.error = error

            # A job cut short between two of its steps takes the run's outcome;
            # its unstarted steps stay pending.
            settled = StepStatus.CANCELLED if status is RunStatus.CANCELLED else StepStatus.FAILED
            for job in run.jobs:
                for step in job.steps:
                    if step.status is StepStatus.RUNNING:
                        step.status = advance_step(step.status, settled)
                        step.completed_at = run.completed_at
                if job.status is StepStatus.RUNNING:
                    job.status = advance_step(job.status, settled)
        logger.info("Run finished", extra={"run_id": record.id, "status": status.value})
