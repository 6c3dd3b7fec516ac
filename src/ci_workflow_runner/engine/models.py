"""Run records exposed to callers.

Fields are snake_case in Python and camelCase on the wire, which is what the
dashboard UI reads.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ci_workflow_runner.engine.state import RunStatus, StepStatus


def utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StepResult(CamelModel):
    id: str
    name: str
    status: StepStatus = StepStatus.PENDING

    # stdout and stderr interleaved in arrival order.
    output: str = ""
    exit_code: int | None = None

    started_at: str | None = None
    completed_at: str | None = None


class JobResult(CamelModel):
    id: str
    name: str
    status: StepStatus = StepStatus.PENDING
    steps: list[StepResult] = Field(default_factory=list)


class Run(CamelModel):
    id: str
    project: str
    workflow_file: str
    workflow_name: str
    status: RunStatus = RunStatus.RUNNING

    started_at: str
    completed_at: str | None = None

    jobs: list[JobResult] = Field(default_factory=list)

    error: str | None = None
    cancel_requested: bool = False

    @property
    def steps(self) -> list[StepResult]:
        return [step for job in self.jobs for step in job.steps]


class WorkflowSummary(CamelModel):
    # `id` and `file` are both the bare file name; the dashboard keys on `file`.
    id: str
    name: str
    file: str
    jobs: list[str] = Field(default_factory=list)
    job_count: int
