#!/usr/bin/env python3
"""Programmatic run example.

This demonstrates using the engine components directly:

* load settings from `.env`
* list the workflows of a local project
* run selected steps and print each step's outcome

The project directory is passed as an argument (not read from `.env`).
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Sequence

from ci_workflow_runner.config import CIRunnerSettings
from ci_workflow_runner.engine import RunExecutor, RunStore, WorkflowParseError
from ci_workflow_runner.engine.paths import StaticProjectResolver
from ci_workflow_runner.engine.supervisor import ProcessSupervisor
from ci_workflow_runner.logging import configure_logging


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run workflow steps (programmatic example).")
    parser.add_argument("--project-dir", type=Path, required=True, help="Project checkout")
    parser.add_argument("--workflow", help="Workflow file, e.g. ci.yml (default: first listed)")
    parser.add_argument(
        "--steps",
        default="",
        help='Comma-separated step ids, e.g. "build-step-0,build-step-1" (optional)',
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = CIRunnerSettings()
    configure_logging(settings.log_level, settings.log_format)

    executor = RunExecutor(
        store=RunStore(max_history=settings.max_run_history),
        resolver=StaticProjectResolver(args.project_dir),
        supervisor=ProcessSupervisor(terminate_grace_seconds=settings.terminate_grace_seconds),
        workflows_dir=settings.workflows_dir,
    )
    project = str(args.project_dir)

    try:
        workflows = executor.list_workflows(project)
    except WorkflowParseError as exc:
        print(str(exc))
        return 1

    for summary in workflows:
        print(f"{summary.id}: {summary.name} ({summary.job_count} jobs)")
    if not workflows:
        print("No workflows found")
        return 0

    workflow_file = args.workflow or workflows[0].id
    selected = [s.strip() for s in args.steps.split(",") if s.strip()] or None

    run = executor.start_run(project=project, workflow_file=workflow_file, selected_steps=selected)
    record = executor.store.record(run.id)
    record.wait_finished()

    final = record.snapshot()
    for step in final.steps:
        print(f"[{step.status.value}] {step.id} {step.name} (exit code: {step.exit_code})")
    print(f"Run {final.id}: {final.status.value}")
    return 0 if final.status.value == "success" else 1


if __name__ == "__main__":
    raise SystemExit(main())
