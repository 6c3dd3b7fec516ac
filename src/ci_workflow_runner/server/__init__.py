"""FastAPI server adapter for ci-workflow-runner.

Design intent:
- Keep execution logic in `ci_workflow_runner.engine.*`
- Keep server-specific concerns (routing, CORS, error bodies) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from ci_workflow_runner.server.app import create_app
