"""Explicit run and step state machines.

Illegal transitions fail loudly instead of silently overwriting a terminal
status. The executor is the only caller; readers only ever see the result.
"""

from __future__ import annotations

from enum import Enum


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    """Status of a planned step. Jobs reuse the same enumeration."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


RUN_TRANSITIONS: dict[RunStatus, set[RunStatus]] = {
    RunStatus.RUNNING: {RunStatus.SUCCESS, RunStatus.FAILED, RunStatus.CANCELLED},
    RunStatus.SUCCESS: set(),
    RunStatus.FAILED: set(),
    RunStatus.CANCELLED: set(),
}

STEP_TRANSITIONS: dict[StepStatus, set[StepStatus]] = {
    StepStatus.PENDING: {StepStatus.RUNNING},
    StepStatus.RUNNING: {StepStatus.SUCCESS, StepStatus.FAILED, StepStatus.CANCELLED},
    StepStatus.SUCCESS: set(),
    StepStatus.FAILED: set(),
    StepStatus.CANCELLED: set(),
}

TERMINAL_RUN_STATUSES = frozenset({RunStatus.SUCCESS, RunStatus.FAILED, RunStatus.CANCELLED})
TERMINAL_STEP_STATUSES = frozenset({StepStatus.SUCCESS, StepStatus.FAILED, StepStatus.CANCELLED})


class IllegalTransitionError(ValueError):
    pass


def advance_run(current: RunStatus, to: RunStatus) -> RunStatus:
    if to not in RUN_TRANSITIONS.get(current, set()):
        raise IllegalTransitionError(f"Illegal run transition: {current.value} -> {to.value}")
    return to


def advance_step(current: StepStatus, to: StepStatus) -> StepStatus:
    if to not in STEP_TRANSITIONS.get(current, set()):
        raise IllegalTransitionError(f"Illegal step transition: {current.value} -> {to.value}")
    return to


def is_terminal(status: RunStatus | StepStatus) -> bool:
    return status in TERMINAL_RUN_STATUSES or status in TERMINAL_STEP_STATUSES
