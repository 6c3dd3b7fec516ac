"""Error taxonomy for the runner.

Errors raised before a run is accepted (path, parse) propagate to the caller.
Errors raised while a run executes (spawn, working directory) are recorded on the
step that hit them and never escape the executor thread.
"""

from __future__ import annotations

from dataclasses import dataclass


class CIRunnerError(Exception):
    """Base class for all runner errors."""


@dataclass
class PathError(CIRunnerError):
    """The project identifier does not resolve to a usable directory."""

    message: str
    project: str | None = None

    def __str__(self) -> str:
        return self.message


@dataclass
class WorkflowParseError(CIRunnerError):
    """A workflow file could not be read or does not match the accepted schema."""

    file_name: str
    message: str

    def __str__(self) -> str:
        return f"Failed to parse workflow {self.file_name!r}: {self.message}"


@dataclass
class WorkflowNotFoundError(WorkflowParseError):
    def __str__(self) -> str:
        return f"Workflow {self.file_name!r} not found: {self.message}"


@dataclass
class InvalidWorkingDirectory(CIRunnerError):
    requested: str
    message: str

    def __str__(self) -> str:
        return f'Working directory "{self.requested}" {self.message}'


@dataclass
class SpawnError(CIRunnerError):
    """The step process could not be started at all."""

    command: str
    message: str

    def __str__(self) -> str:
        return f"Failed to start process: {self.message}"


@dataclass
class RunNotFound(CIRunnerError):
    run_id: str

    def __str__(self) -> str:
        return "Run not found"
