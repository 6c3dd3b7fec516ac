"""Unit tests for the run and step state machines."""

from __future__ import annotations

import pytest

from ci_workflow_runner.engine.state import (
    IllegalTransitionError,
    RunStatus,
    StepStatus,
    advance_run,
    advance_step,
    is_terminal,
)


def test_step_lifecycle() -> None:
    status = advance_step(StepStatus.PENDING, StepStatus.RUNNING)
    assert advance_step(status, StepStatus.SUCCESS) is StepStatus.SUCCESS


def test_step_cannot_skip_running() -> None:
    with pytest.raises(IllegalTransitionError):
        advance_step(StepStatus.PENDING, StepStatus.SUCCESS)


@pytest.mark.parametrize("terminal", [StepStatus.SUCCESS, StepStatus.FAILED, StepStatus.CANCELLED])
def test_terminal_steps_are_final(terminal: StepStatus) -> None:
    with pytest.raises(IllegalTransitionError):
        advance_step(terminal, StepStatus.RUNNING)


def test_run_transitions_exactly_once() -> None:
    status = advance_run(RunStatus.RUNNING, RunStatus.CANCELLED)

    with pytest.raises(IllegalTransitionError):
        advance_run(status, RunStatus.SUCCESS)


def test_is_terminal() -> None:
    assert not is_terminal(RunStatus.RUNNING)
    assert not is_terminal(StepStatus.PENDING)
    assert is_terminal(RunStatus.FAILED)
    assert is_terminal(StepStatus.CANCELLED)


def test_status_values_are_wire_strings() -> None:
    assert RunStatus.SUCCESS.value == "success"
    assert StepStatus.PENDING == "pending"
