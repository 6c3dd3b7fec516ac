"""Turn a caller's step selection into an ordered execution plan."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from ci_workflow_runner.engine.definition import StepDefinition, WorkflowDefinition

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PlannedStep:
    job_id: str
    job_name: str
    step: StepDefinition


def build_plan(
    definition: WorkflowDefinition, selected_step_ids: Iterable[str] | None
) -> list[PlannedStep]:
    """Return the selected steps in document order.

    Rules:
    - a step is planned iff its derived id is selected
    - unknown ids are ignored, so a selection survives small workflow edits
    - an empty selection gives an empty plan
    - `None` selects every executable step
    - steps without a `run` command (e.g. `uses:` actions) are never planned
    """

    selected = None if selected_step_ids is None else set(selected_step_ids)
    if selected is not None and not selected:
        return []

    plan: list[PlannedStep] = []
    for job in definition.jobs:
        for step in job.steps:
            if selected is not None and step.id not in selected:
                continue
            if not step.executable:
                logger.debug(
                    "Skipping non-executable step",
                    extra={"workflow": definition.file, "step_id": step.id},
                )
                continue
            plan.append(PlannedStep(job_id=job.id, job_name=job.name, step=step))
    return plan


def group_by_job(plan: Sequence[PlannedStep]) -> list[tuple[str, str, list[PlannedStep]]]:
    """Group a plan by job, keeping plan order for both jobs and steps."""

    groups: dict[str, tuple[str, str, list[PlannedStep]]] = {}
    for planned in plan:
        if planned.job_id not in groups:
            groups[planned.job_id] = (planned.job_id, planned.job_name, [])
        groups[planned.job_id][2].append(planned)
    return list(groups.values())
