"""Workflow execution engine.

Leaf-first: `loader` parses workflow files, `selector` builds the plan,
`supervisor` owns step processes, `executor` drives a run and `run_store`
keeps every run queryable by id.
"""

from ci_workflow_runner.engine.errors import (
    CIRunnerError,
    InvalidWorkingDirectory,
    PathError,
    RunNotFound,
    SpawnError,
    WorkflowNotFoundError,
    WorkflowParseError,
)
from ci_workflow_runner.engine.executor import RunExecutor
from ci_workflow_runner.engine.run_store import RunRecord, RunStore
from ci_workflow_runner.engine.state import RunStatus, StepStatus
from ci_workflow_runner.engine.supervisor import ProcessExit, ProcessSupervisor

__all__ = [
    "CIRunnerError",
    "InvalidWorkingDirectory",
    "PathError",
    "ProcessExit",
    "ProcessSupervisor",
    "RunExecutor",
    "RunNotFound",
    "RunRecord",
    "RunStatus",
    "RunStore",
    "SpawnError",
    "StepStatus",
    "WorkflowNotFoundError",
    "WorkflowParseError",
]
