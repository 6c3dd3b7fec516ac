"""FastAPI app factory.

Endpoints are thin wrappers over the engine. Collaborators (project resolver,
process supervisor, run store) can be injected, which is how tests run the API
against fake processes and temporary projects.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ci_workflow_runner import __version__
from ci_workflow_runner.config import CIRunnerSettings
from ci_workflow_runner.engine.errors import PathError, RunNotFound, WorkflowParseError
from ci_workflow_runner.engine.executor import RunExecutor
from ci_workflow_runner.engine.paths import DirectoryProjectResolver, ProjectResolver
from ci_workflow_runner.engine.run_store import RunStore
from ci_workflow_runner.engine.supervisor import ProcessSupervisor, Supervisor
from ci_workflow_runner.server.ci_router import router as ci_router
from ci_workflow_runner.server.models import Health

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(
    settings: CIRunnerSettings | None = None,
    *,
    resolver: ProjectResolver | None = None,
    supervisor: Supervisor | None = None,
    store: RunStore | None = None,
) -> FastAPI:
    settings = settings or CIRunnerSettings()

    app = FastAPI(
        title="CI Workflow Runner",
        version=__version__,
        description="Run selected steps of local GitHub-Actions-style workflows.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.state.settings = settings
    app.state.executor = RunExecutor(
        store=store
        or RunStore(
            max_history=settings.max_run_history,
            cancel_wait_seconds=settings.cancel_wait_seconds,
        ),
        resolver=resolver
        or DirectoryProjectResolver(
            settings.projects_root, max_length=settings.max_path_length
        ),
        supervisor=supervisor
        or ProcessSupervisor(terminate_grace_seconds=settings.terminate_grace_seconds),
        workflows_dir=settings.workflows_dir,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PathError)
    async def _path_error(_request: Request, exc: PathError) -> JSONResponse:
        logger.warning("Project path error", extra={"project": exc.project, "reason": str(exc)})
        return _error(500, str(exc))

    @app.exception_handler(WorkflowParseError)
    async def _parse_error(_request: Request, exc: WorkflowParseError) -> JSONResponse:
        logger.warning("Workflow parse error", extra={"file": exc.file_name, "reason": str(exc)})
        return _error(500, str(exc))

    @app.exception_handler(RunNotFound)
    async def _run_not_found(_request: Request, exc: RunNotFound) -> JSONResponse:
        return _error(404, str(exc))

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail))

    @app.get("/api/health", response_model=Health)
    def health() -> Health:
        return Health(version=__version__)

    app.include_router(ci_router, prefix="/api/ci")
    return app
