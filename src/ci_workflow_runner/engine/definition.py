"""Parsed workflow definitions.

These are immutable and rebuilt from the file on every request; nothing caches
them across runs.
"""

from __future__ import annotations

from dataclasses import dataclass


def step_id(job_id: str, index: int) -> str:
    """Stable handle for a step, available before any run exists."""

    return f"{job_id}-step-{index}"


@dataclass(frozen=True, slots=True)
class StepDefinition:
    id: str
    name: str
    run: str | None

    # Effective value after applying job and workflow `defaults.run`.
    working_directory: str | None = None

    # Marketplace actions are parsed for display only.
    uses: str | None = None

    @property
    def executable(self) -> bool:
        return bool(self.run and self.run.strip())


@dataclass(frozen=True, slots=True)
class JobDefinition:
    id: str
    name: str
    steps: tuple[StepDefinition, ...]
    runs_on: str | None = None
    needs: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class WorkflowDefinition:
    name: str
    file: str
    jobs: tuple[JobDefinition, ...]

    @property
    def job_count(self) -> int:
        return len(self.jobs)
