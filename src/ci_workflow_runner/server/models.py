"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Literal

from pydantic import Field

from ci_workflow_runner.engine.definition import JobDefinition, WorkflowDefinition
from ci_workflow_runner.engine.models import CamelModel, Run, WorkflowSummary


class RunRequest(CamelModel):
    # Optional at the schema level so missing fields get a 400 with a readable message.
    project: str | None = None
    workflow_file: str | None = None

    # Omitted means "every executable step"; [] means "nothing".
    selected_steps: list[str] | None = None
    env: dict[str, str | int | float | bool | None] = Field(default_factory=dict)


class RunStarted(CamelModel):
    status: Literal["started"] = "started"
    run_id: str


class CancelResponse(CamelModel):
    success: bool = True
    run: Run


class RunList(CamelModel):
    runs: list[Run]


class ClearRunsResponse(CamelModel):
    success: bool = True
    removed: int


class WorkflowList(CamelModel):
    workflows: list[WorkflowSummary]


class StepDetail(CamelModel):
    id: str
    name: str
    run: str | None = None
    uses: str | None = None
    working_directory: str | None = None
    executable: bool


class JobDetail(CamelModel):
    id: str
    name: str
    runs_on: str | None = None
    needs: list[str] = Field(default_factory=list)
    steps: list[StepDetail]

    # Subset of `steps` the runner can execute locally.
    executable_steps: list[StepDetail]

    @classmethod
    def from_definition(cls, job: JobDefinition) -> JobDetail:
        steps = [
            StepDetail(
                id=s.id,
                name=s.name,
                run=s.run,
                uses=s.uses,
                working_directory=s.working_directory,
                executable=s.executable,
            )
            for s in job.steps
        ]
        return cls(
            id=job.id,
            name=job.name,
            runs_on=job.runs_on,
            needs=list(job.needs),
            steps=steps,
            executable_steps=[s for s in steps if s.executable],
        )


class WorkflowDetail(CamelModel):
    name: str
    file: str
    jobs: list[JobDetail]

    @classmethod
    def from_definition(cls, definition: WorkflowDefinition) -> WorkflowDetail:
        return cls(
            name=definition.name,
            file=definition.file,
            jobs=[JobDetail.from_definition(job) for job in definition.jobs],
        )


class Health(CamelModel):
    status: str = "ok"
    version: str
