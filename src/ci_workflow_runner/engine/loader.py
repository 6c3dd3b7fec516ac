"""Workflow discovery and parsing.

Accepted schema (everything else is ignored, not rejected):

    name: <string>
    defaults:
      run:
        working-directory: <relative path>
    jobs:
      <job id>:
        name: <string>
        runs-on: <string | list>
        needs: <string | list>
        defaults:
          run:
            working-directory: <relative path>
        steps:
          - name: <string>
            run: <shell command>
            working-directory: <relative path>
            uses: <action reference>

`run` is kept as an opaque shell string: no expressions, matrices or `if:`
conditions are evaluated.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from ci_workflow_runner.engine.definition import (
    JobDefinition,
    StepDefinition,
    WorkflowDefinition,
    step_id,
)
from ci_workflow_runner.engine.errors import WorkflowNotFoundError, WorkflowParseError
from ci_workflow_runner.engine.models import WorkflowSummary

logger = logging.getLogger(__name__)

WORKFLOWS_DIR = Path(".github") / "workflows"
WORKFLOW_SUFFIXES = (".yml", ".yaml")


def list_workflow_files(project_dir: Path, *, workflows_dir: Path = WORKFLOWS_DIR) -> list[Path]:
    """Return workflow files in a stable order (filename sort)."""

    directory = project_dir / workflows_dir
    if not directory.is_dir():
        return []

    candidates = [
        p for p in directory.iterdir() if p.is_file() and p.name.endswith(WORKFLOW_SUFFIXES)
    ]
    return sorted(candidates, key=lambda p: p.name)


def list_workflows(
    project_dir: Path, *, workflows_dir: Path = WORKFLOWS_DIR
) -> list[WorkflowSummary]:
    """Summarise each workflow file without building its step definitions."""

    summaries: list[WorkflowSummary] = []
    for path in list_workflow_files(project_dir, workflows_dir=workflows_dir):
        document = _load_document(_read_workflow(path, path.name), path.name)
        jobs = _jobs_mapping(document, path.name)
        summaries.append(
            WorkflowSummary(
                id=path.name,
                name=_optional_str(document.get("name")) or path.name,
                file=path.name,
                jobs=[str(job_id) for job_id in jobs],
                job_count=len(jobs),
            )
        )
    return summaries


def parse_workflow(
    project_dir: Path, file_id: str, *, workflows_dir: Path = WORKFLOWS_DIR
) -> WorkflowDefinition:
    """Fully parse one workflow file of a project."""

    path = workflow_path(project_dir, file_id, workflows_dir=workflows_dir)
    return parse_workflow_text(_read_workflow(path, file_id), file_id)


def workflow_path(project_dir: Path, file_id: str, *, workflows_dir: Path = WORKFLOWS_DIR) -> Path:
    # File ids are bare names as returned by `list_workflows`.
    name = file_id.strip()
    if not name or name in {".", ".."} or "/" in name or "\\" in name:
        raise WorkflowNotFoundError(file_name=file_id, message="invalid workflow file name")
    if not name.endswith(WORKFLOW_SUFFIXES):
        raise WorkflowNotFoundError(file_name=file_id, message="not a .yml/.yaml file")
    return project_dir / workflows_dir / name


def parse_workflow_text(text: str, file_name: str) -> WorkflowDefinition:
    document = _load_document(text, file_name)
    jobs_raw = _jobs_mapping(document, file_name)
    workflow_default_dir = _default_working_directory(document)

    jobs: list[JobDefinition] = []
    for raw_job_id, job_raw in jobs_raw.items():
        job_id = str(raw_job_id)
        if not isinstance(job_raw, dict):
            raise WorkflowParseError(
                file_name=file_name, message=f"job {job_id!r} must be a mapping"
            )
        jobs.append(_parse_job(job_id, job_raw, file_name, workflow_default_dir))

    return WorkflowDefinition(
        name=_optional_str(document.get("name")) or file_name,
        file=file_name,
        jobs=tuple(jobs),
    )


def _parse_job(
    job_id: str, job_raw: dict[Any, Any], file_name: str, workflow_default_dir: str | None
) -> JobDefinition:
    steps_raw = job_raw.get("steps") or []
    if not isinstance(steps_raw, list):
        raise WorkflowParseError(
            file_name=file_name, message=f"steps of job {job_id!r} must be a list"
        )

    job_default_dir = _default_working_directory(job_raw) or workflow_default_dir

    steps: list[StepDefinition] = []
    for index, step_raw in enumerate(steps_raw):
        if not isinstance(step_raw, dict):
            logger.debug(
                "Ignoring non-mapping step",
                extra={"file": file_name, "job_id": job_id, "index": index},
            )
            continue
        steps.append(
            StepDefinition(
                id=step_id(job_id, index),
                name=_optional_str(step_raw.get("name")) or f"Step {index + 1}",
                run=_optional_str(step_raw.get("run")),
                working_directory=_optional_str(step_raw.get("working-directory"))
                or job_default_dir,
                uses=_optional_str(step_raw.get("uses")),
            )
        )

    return JobDefinition(
        id=job_id,
        name=_optional_str(job_raw.get("name")) or job_id,
        steps=tuple(steps),
        runs_on=_runs_on(job_raw.get("runs-on")),
        needs=_str_tuple(job_raw.get("needs")),
    )


def _read_workflow(path: Path, file_name: str) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise WorkflowNotFoundError(file_name=file_name, message=str(path)) from e
    except UnicodeDecodeError as e:
        raise WorkflowParseError(file_name=file_name, message=f"not valid UTF-8: {e}") from e
    except OSError as e:
        raise WorkflowParseError(file_name=file_name, message=str(e)) from e


def _load_document(text: str, file_name: str) -> dict[Any, Any]:
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise WorkflowParseError(file_name=file_name, message=f"invalid YAML: {e}") from e
    if not isinstance(document, dict):
        raise WorkflowParseError(file_name=file_name, message="top level must be a mapping")
    return document


def _jobs_mapping(document: dict[Any, Any], file_name: str) -> dict[Any, Any]:
    if "jobs" not in document:
        raise WorkflowParseError(file_name=file_name, message="missing 'jobs' key")
    jobs = document["jobs"]
    if not isinstance(jobs, dict):
        raise WorkflowParseError(file_name=file_name, message="'jobs' must be a mapping")
    return jobs


def _default_working_directory(section: dict[Any, Any]) -> str | None:
    defaults = section.get("defaults")
    if not isinstance(defaults, dict):
        return None
    run_defaults = defaults.get("run")
    if not isinstance(run_defaults, dict):
        return None
    return _optional_str(run_defaults.get("working-directory"))


def _optional_str(value: object) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value)
    return text if text.strip() else None


def _str_tuple(value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, list):
        return tuple(str(v) for v in value if v is not None)
    return (str(value),)


def _runs_on(value: object) -> str | None:
    if isinstance(value, list):
        return ", ".join(str(v) for v in value) or None
    return _optional_str(value)
