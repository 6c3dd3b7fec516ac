"""CLI entrypoint for the CI runner.

`serve` starts the REST API; `list-workflows` and `run` work directly against a
local project directory without the server.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from ci_workflow_runner import __version__
from ci_workflow_runner.config import CIRunnerSettings
from ci_workflow_runner.engine.errors import CIRunnerError
from ci_workflow_runner.engine.executor import RunExecutor
from ci_workflow_runner.engine.paths import StaticProjectResolver
from ci_workflow_runner.engine.run_store import RunStore
from ci_workflow_runner.engine.state import RunStatus
from ci_workflow_runner.engine.supervisor import ProcessSupervisor
from ci_workflow_runner.logging import configure_logging

logger = logging.getLogger(__name__)

EXIT_CODES: dict[RunStatus, int] = {
    RunStatus.SUCCESS: 0,
    RunStatus.FAILED: 1,
    RunStatus.CANCELLED: 130,
}


def _parse_env(values: list[str] | None) -> dict[str, str]:
    env: dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise argparse.ArgumentTypeError(f"Expected KEY=VALUE, got {item!r}")
        env[key.strip()] = value
    return env


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ci-runner",
        description="Run selected steps of local GitHub-Actions-style workflows",
    )
    parser.add_argument("--version", action="version", version=f"ci-workflow-runner {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Start the REST API")
    serve.add_argument("--host", default=None, help="Bind address (defaults to CI_HOST)")
    serve.add_argument("--port", type=int, default=None, help="Port (defaults to CI_PORT)")

    list_workflows = subparsers.add_parser(
        "list-workflows", help="List workflow files of a project directory"
    )
    list_workflows.add_argument(
        "--project-dir", type=Path, default=Path("."), help="Project root (default: cwd)"
    )

    run = subparsers.add_parser("run", help="Run selected workflow steps and wait for the result")
    run.add_argument(
        "--project-dir", type=Path, default=Path("."), help="Project root (default: cwd)"
    )
    run.add_argument(
        "--workflow",
        required=True,
        help="Workflow file name inside the workflows directory, e.g. 'ci.yml'",
    )
    run.add_argument(
        "--step",
        dest="steps",
        action="append",
        default=None,
        help="Step id to run, e.g. 'build-step-0' (repeatable; default: every runnable step)",
    )
    run.add_argument(
        "--env",
        action="append",
        default=None,
        help="Extra environment variable KEY=VALUE for the steps (repeatable)",
    )

    return parser


def _executor(settings: CIRunnerSettings, project_dir: Path) -> RunExecutor:
    return RunExecutor(
        store=RunStore(
            max_history=settings.max_run_history,
            cancel_wait_seconds=settings.cancel_wait_seconds,
        ),
        resolver=StaticProjectResolver(project_dir),
        supervisor=ProcessSupervisor(terminate_grace_seconds=settings.terminate_grace_seconds),
        workflows_dir=settings.workflows_dir,
    )


def _serve(settings: CIRunnerSettings, host: str | None, port: int | None) -> int:
    import uvicorn

    from ci_workflow_runner.server.app import create_app

    uvicorn.run(
        create_app(settings),
        host=host or settings.host,
        port=port or settings.port,
        log_config=None,
    )
    return 0


def _run(settings: CIRunnerSettings, args: argparse.Namespace) -> int:
    executor = _executor(settings, args.project_dir)
    project = str(args.project_dir)

    run = executor.start_run(
        project=project,
        workflow_file=args.workflow,
        selected_steps=args.steps,
        env=_parse_env(args.env),
    )
    record = executor.store.record(run.id)
    try:
        # Short waits keep Ctrl-C responsive.
        while not record.wait_finished(0.2):
            pass
    except KeyboardInterrupt:
        logger.warning("Interrupted; cancelling run", extra={"run_id": run.id})
        executor.store.cancel(run.id)

    final = record.snapshot()
    print(final.model_dump_json(by_alias=True, indent=2))
    return EXIT_CODES.get(final.status, 1)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = CIRunnerSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level, settings.log_format)

    try:
        if args.command == "serve":
            return _serve(settings, args.host, args.port)

        if args.command == "list-workflows":
            executor = _executor(settings, args.project_dir)
            summaries = executor.list_workflows(str(args.project_dir))
            payload = {"workflows": [s.model_dump(mode="json", by_alias=True) for s in summaries]}
            print(json.dumps(payload, indent=2, ensure_ascii=False))
            return 0

        if args.command == "run":
            return _run(settings, args)

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except argparse.ArgumentTypeError as e:
        print(str(e), file=sys.stderr)
        return 2

    except CIRunnerError as e:
        logger.warning(str(e), extra={"error_type": type(e).__name__})
        print(str(e), file=sys.stderr)
        return 3

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
