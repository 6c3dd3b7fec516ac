"""CI REST API.

All routes are mounted under `/api/ci`. Handlers stay thin: path and parse
errors raised by the engine are turned into `{"error": ...}` responses by the
app-level exception handlers.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request

from ci_workflow_runner.engine.executor import RunExecutor
from ci_workflow_runner.engine.models import Run
from ci_workflow_runner.engine.run_store import RunStore
from ci_workflow_runner.server.models import (
    CancelResponse,
    ClearRunsResponse,
    RunList,
    RunRequest,
    RunStarted,
    WorkflowDetail,
    WorkflowList,
)

router = APIRouter()


def _executor(request: Request) -> RunExecutor:
    executor = getattr(request.app.state, "executor", None)
    if not isinstance(executor, RunExecutor):
        # This should never happen for the real app, but keeps the API fail-fast.
        raise HTTPException(status_code=500, detail="Run executor not configured")
    return executor


def _store(request: Request) -> RunStore:
    return _executor(request).store


def _require(value: str | None, detail: str) -> str:
    if value is None or not value.strip():
        raise HTTPException(status_code=400, detail=detail)
    return value


@router.get("/workflows", response_model=WorkflowList)
def list_workflows(request: Request, project: str | None = None) -> WorkflowList:
    project = _require(project, "Project name is required")
    return WorkflowList(workflows=_executor(request).list_workflows(project))


@router.get("/workflow/{workflow_file}", response_model=WorkflowDetail)
def get_workflow(request: Request, workflow_file: str, project: str | None = None) -> WorkflowDetail:
    project = _require(project, "Project name is required")
    definition = _executor(request).describe_workflow(project, workflow_file)
    return WorkflowDetail.from_definition(definition)


@router.post("/run", response_model=RunStarted)
def start_run(request: Request, req: RunRequest) -> RunStarted:
    detail = "Project and workflow file are required"
    project = _require(req.project, detail)
    workflow_file = _require(req.workflow_file, detail)

    run = _executor(request).start_run(
        project=project,
        workflow_file=workflow_file,
        selected_steps=req.selected_steps,
        env=req.env,
    )
    return RunStarted(run_id=run.id)


@router.get("/run/{run_id}", response_model=Run)
def get_run(request: Request, run_id: str) -> Run:
    return _store(request).get(run_id)


@router.post("/run/{run_id}/cancel", response_model=CancelResponse)
def cancel_run(request: Request, run_id: str) -> CancelResponse:
    return CancelResponse(run=_store(request).cancel(run_id))


@router.get("/runs", response_model=RunList)
def list_project_runs(request: Request, project: str | None = None) -> RunList:
    project = _require(project, "Project name is required")
    return RunList(runs=_store(request).list_for_project(project))


@router.delete("/runs", response_model=ClearRunsResponse)
def clear_project_runs(request: Request, project: str | None = None) -> ClearRunsResponse:
    project = _require(project, "Project name is required")
    return ClearRunsResponse(removed=_store(request).clear_finished(project))


@router.get("/history", response_model=RunList)
def run_history(
    request: Request,
    limit: int = Query(default=10, ge=1, le=500),
    project: str | None = None,
) -> RunList:
    return RunList(runs=_store(request).list_history(limit, project=project))


@router.get("/active", response_model=RunList)
def active_runs(request: Request) -> RunList:
    return RunList(runs=_store(request).list_active())
