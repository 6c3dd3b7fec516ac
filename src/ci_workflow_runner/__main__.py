from __future__ import annotations

from ci_workflow_runner.main import main

if __name__ == "__main__":
    raise SystemExit(main())
