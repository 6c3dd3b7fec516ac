"""Test configuration and fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from ci_workflow_runner.config import CIRunnerSettings
from ci_workflow_runner.engine.executor import RunExecutor
from ci_workflow_runner.engine.paths import StaticProjectResolver
from ci_workflow_runner.engine.run_store import RunStore
from ci_workflow_runner.server.app import create_app
from tests.support import WORKFLOW_YAML, FakeSupervisor, write_workflow


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A project checkout with one single-job workflow."""
    project = (tmp_path / "projects" / "sample").resolve()
    project.mkdir(parents=True)
    write_workflow(project, WORKFLOW_YAML)
    return project


@pytest.fixture
def supervisor() -> FakeSupervisor:
    return FakeSupervisor()


@pytest.fixture
def store() -> RunStore:
    return RunStore(max_history=50, cancel_wait_seconds=2.0)


@pytest.fixture
def executor(project_dir: Path, supervisor: FakeSupervisor, store: RunStore) -> RunExecutor:
    return RunExecutor(
        store=store,
        resolver=StaticProjectResolver(project_dir),
        supervisor=supervisor,
    )


@pytest.fixture
def settings() -> CIRunnerSettings:
    return CIRunnerSettings(cancel_wait_seconds=2.0, _env_file=None)


@pytest.fixture
def client(
    settings: CIRunnerSettings, project_dir: Path, supervisor: FakeSupervisor, store: RunStore
) -> Iterator[TestClient]:
    app = create_app(
        settings,
        resolver=StaticProjectResolver(project_dir),
        supervisor=supervisor,
        store=store,
    )
    with TestClient(app) as test_client:
        yield test_client
