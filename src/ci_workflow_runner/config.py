"""Configuration for the CI runner.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Nothing here is required: the runner starts with defaults and only the API
routes that resolve projects by name care about `CI_PROJECTS_ROOT`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CIRunnerSettings(BaseSettings):
    """Settings shared by the REST server and the CLI.

    Environment variables:
    - LOG_LEVEL                    (optional)
    - LOG_FORMAT                   (optional)
    - CI_PROJECTS_ROOT             (optional)
    - CI_WORKFLOWS_DIR             (optional)
    - CI_TERMINATE_GRACE_SECONDS   (optional)
    - CI_CANCEL_WAIT_SECONDS       (optional)
    - CI_MAX_RUN_HISTORY           (optional)
    - CI_MAX_PATH_LENGTH           (optional)
    - CI_CORS_ORIGINS              (optional)
    - CI_HOST / CI_PORT            (optional)

    Notes:
        Fields may also be passed by name, e.g. `CIRunnerSettings(cancel_wait_seconds=1)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    log_format: Literal["json", "text"] = Field(
        default="json",
        validation_alias="LOG_FORMAT",
        description="`json` for log shippers, `text` for reading in a terminal",
    )

    projects_root: Path | None = Field(
        default=None,
        validation_alias="CI_PROJECTS_ROOT",
        description=(
            "Directory that contains one sub-directory per project. When unset, the "
            "project identifier sent by callers must be an absolute path."
        ),
    )

    workflows_dir: Path = Field(
        default=Path(".github/workflows"),
        validation_alias="CI_WORKFLOWS_DIR",
        description="Workflow directory, relative to each project root",
    )

    terminate_grace_seconds: float = Field(
        default=2.0,
        validation_alias="CI_TERMINATE_GRACE_SECONDS",
        description="Delay between SIGTERM and SIGKILL when a step is cancelled",
        ge=0.0,
    )

    cancel_wait_seconds: float = Field(
        default=5.0,
        validation_alias="CI_CANCEL_WAIT_SECONDS",
        description=(
            "How long a cancel request waits for the run to reach its terminal state "
            "before returning the current snapshot."
        ),
        ge=0.0,
    )

    max_run_history: int = Field(
        default=200,
        validation_alias="CI_MAX_RUN_HISTORY",
        description="Number of finished runs kept in memory; running runs are never evicted",
        ge=1,
    )

    max_path_length: int = Field(
        default=2048,
        validation_alias="CI_MAX_PATH_LENGTH",
        description="Maximum accepted length of a resolved project path",
        gt=0,
    )

    # Dev-friendly CORS (Vite). Override via CI_CORS_ORIGINS=...
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="CI_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    host: str = Field(default="127.0.0.1", validation_alias="CI_HOST")
    port: int = Field(default=8765, validation_alias="CI_PORT", gt=0, le=65535)

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
