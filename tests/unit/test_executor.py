from __future__ import annotations

import signal
from pathlib import Path

import pytest

import ci_workflow_runner.engine.executor as executor_module
from ci_workflow_runner.engine.definition import StepDefinition
from ci_workflow_runner.engine.errors import WorkflowNotFoundError
from ci_workflow_runner.engine.executor import CANCELLED_MESSAGE, RunExecutor, merge_environment
from ci_workflow_runner.engine.models import Run
from ci_workflow_runner.engine.selector import PlannedStep
from ci_workflow_runner.engine.state import RunStatus, StepStatus
from tests.support import TWO_JOB_WORKFLOW, WORKFLOW_WITH_WORKDIR, FakeSupervisor, write_workflow


def _wait(executor: RunExecutor, run: Run) -> Run:
    record = executor.store.record(run.id)
    assert record.wait_finished(2.0), "run did not finish"
    return record.snapshot()


def test_successful_step(
    executor: RunExecutor, supervisor: FakeSupervisor, project_dir: Path
) -> None:
    run = executor.start_run(
        project="sample", workflow_file="ci.yml", selected_steps=["build-step-0"]
    )
    assert run.status is RunStatus.RUNNING
    assert run.id.startswith("run-")

    process = supervisor.wait_for_process(0)
    process.emit_stdout("running\n")
    process.emit_close(0)
    final = _wait(executor, run)

    assert process.command == 'echo "running"'
    assert process.cwd == project_dir
    assert final.status is RunStatus.SUCCESS
    assert final.workflow_name == "Test Workflow"
    assert final.completed_at is not None
    assert final.jobs[0].status is StepStatus.SUCCESS
    step = final.jobs[0].steps[0]
    assert step.status is StepStatus.SUCCESS
    assert step.output == "running\n"
    assert step.exit_code == 0
    assert step.started_at is not None and step.completed_at is not None


def test_output_keeps_arrival_order(executor: RunExecutor, supervisor: FakeSupervisor) -> None:
    run = executor.start_run(project="sample", workflow_file="ci.yml", selected_steps=None)

    process = supervisor.wait_for_process(0)
    process.emit_stdout("out-1\n")
    process.emit_stderr("err-1\n")
    process.emit_stdout("out-2\n")
    process.emit_close(0)

    assert _wait(executor, run).steps[0].output == "out-1\nerr-1\nout-2\n"


def test_failed_step_stops_the_run(
    executor: RunExecutor, supervisor: FakeSupervisor, project_dir: Path
) -> None:
    write_workflow(project_dir, TWO_JOB_WORKFLOW, "pipeline.yml")
    run = executor.start_run(project="sample", workflow_file="pipeline.yml", selected_steps=None)

    supervisor.wait_for_process(0).emit_close(2)
    final = _wait(executor, run)

    assert final.status is RunStatus.FAILED
    assert [s.status for s in final.steps] == [
        StepStatus.FAILED,
        StepStatus.PENDING,
        StepStatus.PENDING,
    ]
    assert final.steps[0].exit_code == 2
    assert final.steps[0].output == "Command failed with exit code 2"
    assert [j.status for j in final.jobs] == [StepStatus.FAILED, StepStatus.PENDING]
    assert len(supervisor.processes) == 1


def test_steps_run_sequentially_across_jobs(
    executor: RunExecutor, supervisor: FakeSupervisor, project_dir: Path
) -> None:
    write_workflow(project_dir, TWO_JOB_WORKFLOW, "pipeline.yml")
    run = executor.start_run(project="sample", workflow_file="pipeline.yml", selected_steps=None)

    for index in range(3):
        process = supervisor.wait_for_process(index)
        assert len(supervisor.processes) == index + 1
        process.emit_close(0)
    final = _wait(executor, run)

    assert [p.command for p in supervisor.processes] == ["make install", "make build", "make test"]
    assert final.status is RunStatus.SUCCESS
    assert [j.status for j in final.jobs] == [StepStatus.SUCCESS, StepStatus.SUCCESS]


def test_selection_limits_the_plan(
    executor: RunExecutor, supervisor: FakeSupervisor, project_dir: Path
) -> None:
    write_workflow(project_dir, TWO_JOB_WORKFLOW, "pipeline.yml")
    run = executor.start_run(
        project="sample", workflow_file="pipeline.yml", selected_steps=["test-step-0", "nope"]
    )

    assert [j.id for j in run.jobs] == ["test"]
    supervisor.wait_for_process(0).emit_close(0)
    _wait(executor, run)
    assert [p.command for p in supervisor.processes] == ["make test"]


def test_empty_selection_succeeds_immediately(
    executor: RunExecutor, supervisor: FakeSupervisor
) -> None:
    run = executor.start_run(project="sample", workflow_file="ci.yml", selected_steps=[])

    assert run.status is RunStatus.SUCCESS
    assert run.jobs == []
    assert run.completed_at is not None
    assert supervisor.processes == []


def test_cancel_running_step(
    executor: RunExecutor, supervisor: FakeSupervisor, project_dir: Path
) -> None:
    write_workflow(project_dir, TWO_JOB_WORKFLOW, "pipeline.yml")
    run = executor.start_run(project="sample", workflow_file="pipeline.yml", selected_steps=None)
    process = supervisor.wait_for_process(0)
    process.emit_stdout("installing\n")

    final = executor.store.cancel(run.id)

    assert process.terminate_calls == [signal.SIGTERM]
    assert final.status is RunStatus.CANCELLED
    assert final.cancel_requested is True
    first = final.steps[0]
    assert first.status is StepStatus.CANCELLED
    assert first.output == f"installing\n{CANCELLED_MESSAGE}"
    assert [s.status for s in final.steps[1:]] == [StepStatus.PENDING, StepStatus.PENDING]
    assert final.jobs[0].status is StepStatus.CANCELLED
    assert len(supervisor.processes) == 1


def test_natural_exit_wins_over_late_cancel(
    executor: RunExecutor, supervisor: FakeSupervisor, project_dir: Path
) -> None:
    write_workflow(project_dir, TWO_JOB_WORKFLOW, "pipeline.yml")
    run = executor.start_run(project="sample", workflow_file="pipeline.yml", selected_steps=None)
    process = supervisor.wait_for_process(0)
    process.ignore_terminate = True

    assert executor.store.record(run.id).request_cancel() is True
    process.emit_close(0)
    final = _wait(executor, run)

    # The step finished on its own; the cancel stops the run before the next one.
    assert final.steps[0].status is StepStatus.SUCCESS
    assert final.steps[0].exit_code == 0
    assert final.steps[1].status is StepStatus.PENDING
    assert final.status is RunStatus.CANCELLED
    assert final.jobs[0].status is StepStatus.CANCELLED
    assert len(supervisor.processes) == 1


def test_late_cancel_on_last_step_keeps_success(
    executor: RunExecutor, supervisor: FakeSupervisor
) -> None:
    run = executor.start_run(project="sample", workflow_file="ci.yml", selected_steps=None)
    process = supervisor.wait_for_process(0)
    process.ignore_terminate = True

    executor.store.record(run.id).request_cancel()
    process.emit_close(0)
    final = _wait(executor, run)

    assert final.status is RunStatus.SUCCESS
    assert final.cancel_requested is True


def test_cancel_finished_run_is_unchanged(
    executor: RunExecutor, supervisor: FakeSupervisor
) -> None:
    run = executor.start_run(project="sample", workflow_file="ci.yml", selected_steps=None)
    supervisor.wait_for_process(0).emit_close(0)
    done = _wait(executor, run)

    assert executor.store.cancel(run.id) == done


def test_invalid_working_directory_fails_the_step(
    executor: RunExecutor, supervisor: FakeSupervisor, project_dir: Path
) -> None:
    write_workflow(project_dir, WORKFLOW_WITH_WORKDIR)
    run = executor.start_run(project="sample", workflow_file="ci.yml", selected_steps=None)
    final = _wait(executor, run)

    assert supervisor.processes == []
    assert final.status is RunStatus.FAILED
    step = final.steps[0]
    assert step.status is StepStatus.FAILED
    assert step.exit_code is None
    assert step.output == 'Working directory "subdir" does not exist within the project'


def test_existing_working_directory_is_used(
    executor: RunExecutor, supervisor: FakeSupervisor, project_dir: Path
) -> None:
    write_workflow(project_dir, WORKFLOW_WITH_WORKDIR)
    (project_dir / "subdir").mkdir()
    run = executor.start_run(project="sample", workflow_file="ci.yml", selected_steps=None)

    process = supervisor.wait_for_process(0)
    process.emit_close(0)
    _wait(executor, run)

    assert process.cwd == project_dir / "subdir"


def test_spawn_error_fails_the_step(executor: RunExecutor, supervisor: FakeSupervisor) -> None:
    supervisor.spawn_error = "No such file or directory"
    run = executor.start_run(project="sample", workflow_file="ci.yml", selected_steps=None)
    final = _wait(executor, run)

    assert final.status is RunStatus.FAILED
    assert final.steps[0].status is StepStatus.FAILED
    assert final.steps[0].output == "Failed to start process: No such file or directory"


def test_unexpected_error_is_recorded_on_the_run(
    monkeypatch, executor: RunExecutor, supervisor: FakeSupervisor
) -> None:
    def boom(*_args, **_kwargs):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(supervisor, "spawn", boom)
    run = executor.start_run(project="sample", workflow_file="ci.yml", selected_steps=None)
    final = _wait(executor, run)

    assert final.status is RunStatus.FAILED
    assert final.error == "kaboom"
    assert final.steps[0].status is StepStatus.FAILED


def test_environment_overrides_reach_the_process(
    monkeypatch, executor: RunExecutor, supervisor: FakeSupervisor
) -> None:
    monkeypatch.setenv("CI_RUNNER_BASE_VAR", "inherited")
    monkeypatch.delenv("CI_RUNNER_DROPPED", raising=False)
    run = executor.start_run(
        project="sample",
        workflow_file="ci.yml",
        selected_steps=None,
        env={"FOO": "bar", "FLAG": True, "COUNT": 3, "CI_RUNNER_DROPPED": None},
    )

    process = supervisor.wait_for_process(0)
    process.emit_close(0)
    _wait(executor, run)

    assert process.env["CI_RUNNER_BASE_VAR"] == "inherited"
    assert process.env["FOO"] == "bar"
    assert process.env["FLAG"] == "true"
    assert process.env["COUNT"] == "3"
    assert "CI_RUNNER_DROPPED" not in process.env


def test_merge_environment_with_explicit_base() -> None:
    env = merge_environment({"A": False, "B": 1.5}, base={"A": "x", "PATH": "/bin"})

    assert env == {"A": "false", "B": "1.5", "PATH": "/bin"}


def test_unknown_workflow_is_rejected_before_storing(executor: RunExecutor) -> None:
    with pytest.raises(WorkflowNotFoundError):
        executor.start_run(project="sample", workflow_file="missing.yml", selected_steps=None)

    assert executor.store.list_history() == []


def test_list_and_describe_workflows(executor: RunExecutor, project_dir: Path) -> None:
    write_workflow(project_dir, TWO_JOB_WORKFLOW, "pipeline.yml")

    assert [w.id for w in executor.list_workflows("sample")] == ["ci.yml", "pipeline.yml"]
    assert executor.describe_workflow("sample", "pipeline.yml").job_count == 2


def test_signal_death_is_explained_in_output(
    executor: RunExecutor, supervisor: FakeSupervisor
) -> None:
    run = executor.start_run(project="sample", workflow_file="ci.yml", selected_steps=None)

    process = supervisor.wait_for_process(0)
    process.emit_stdout("partial")
    process.emit_close(None, sig=signal.SIGKILL)
    step = _wait(executor, run).steps[0]

    assert step.status is StepStatus.FAILED
    assert step.exit_code is None
    assert step.output == f"partial\nCommand terminated by signal {int(signal.SIGKILL)}"


def test_planned_step_without_command_fails_the_run(
    monkeypatch, executor: RunExecutor, supervisor: FakeSupervisor
) -> None:
    action = StepDefinition(
        id="build-step-0", name="Checkout", run=None, uses="actions/checkout@v4"
    )
    monkeypatch.setattr(
        executor_module,
        "build_plan",
        lambda _definition, _selected: [PlannedStep(job_id="build", job_name="build", step=action)],
    )

    run = executor.start_run(project="sample", workflow_file="ci.yml", selected_steps=None)
    final = _wait(executor, run)

    assert final.status is RunStatus.FAILED
    assert final.error == "Step build-step-0 has no run command"
    assert supervisor.processes == []
