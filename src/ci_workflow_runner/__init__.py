"""CI workflow runner.

Runs selected steps of a GitHub-Actions-style workflow file on the local host:
- workflow discovery and parsing from `.github/workflows`
- one supervised shell process per selected step
- an inspectable per-run state machine with cancellation
- a REST API and a small CLI on top
"""

__version__ = "0.1.0"

from ci_workflow_runner.config import CIRunnerSettings

__all__ = ["__version__", "CIRunnerSettings"]
