"""Project path resolution and validation.

Projects arrive as identifiers from callers. Before anything touches the disk the
resolved directory is checked against system directories, an optional workspace
root and sensitive-name patterns. Step working directories are then confined to
the resolved project directory.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from ci_workflow_runner.engine.errors import InvalidWorkingDirectory, PathError

logger = logging.getLogger(__name__)

# System directories that should never be used as project roots.
FORBIDDEN_PATHS: tuple[str, ...] = (
    "/",
    "/etc",
    "/bin",
    "/sbin",
    "/usr",
    "/dev",
    "/proc",
    "/sys",
    "/var",
    "/boot",
    "/root",
    "/lib",
    "/lib64",
    "/opt",
    "/tmp",
    "/run",
)

# Allowed subdirectories of otherwise forbidden paths.
SAFE_EXCEPTIONS: tuple[str, ...] = ("/var/tmp", "/var/folders")

SENSITIVE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\.env$", re.IGNORECASE),
    re.compile(r"id_rsa$", re.IGNORECASE),
    re.compile(r"\.ssh/", re.IGNORECASE),
    re.compile(r"\.aws/", re.IGNORECASE),
    re.compile(r"credentials$", re.IGNORECASE),
    re.compile(r"\.pgpass$", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"\.pem$", re.IGNORECASE),
    re.compile(r"\.key$", re.IGNORECASE),
)

DEFAULT_MAX_PATH_LENGTH = 4096


@dataclass(frozen=True, slots=True)
class PathValidation:
    valid: bool
    error: str | None = None
    resolved_path: str | None = None


def validate_path_length(path: str, max_length: int = DEFAULT_MAX_PATH_LENGTH) -> PathValidation:
    if not path:
        return PathValidation(valid=False, error="Path cannot be empty")
    if len(path) > max_length:
        return PathValidation(
            valid=False, error=f"Path length {len(path)} exceeds maximum {max_length}"
        )
    return PathValidation(valid=True)


def check_sensitive_file(path: str) -> re.Pattern[str] | None:
    """Return the first sensitive pattern the path matches, if any."""

    for pattern in SENSITIVE_PATTERNS:
        if pattern.search(path):
            return pattern
    return None


def validate_path(
    requested: str,
    workspace_root: str | None = None,
    *,
    forbidden_paths: Sequence[str] = FORBIDDEN_PATHS,
    _seen: frozenset[str] = frozenset(),
) -> PathValidation:
    if not requested or not isinstance(requested, str):
        return PathValidation(valid=False, error="Path must be a non-empty string")

    normalized = os.path.normpath(os.path.abspath(requested))

    for forbidden in forbidden_paths:
        if normalized == forbidden or normalized.startswith(forbidden + "/"):
            if not any(normalized.startswith(safe + "/") for safe in SAFE_EXCEPTIONS):
                return PathValidation(
                    valid=False,
                    error=f"Cannot use system directory as a project: {forbidden}",
                )

    if workspace_root:
        root = os.path.normpath(os.path.abspath(workspace_root))
        if normalized != root and not normalized.startswith(root.rstrip("/") + "/"):
            return PathValidation(
                valid=False, error=f"Path must be within workspace root: {workspace_root}"
            )

    # Symlinks are re-validated against their target.
    if os.path.islink(normalized) and normalized not in _seen:
        return validate_path(
            os.path.realpath(normalized),
            workspace_root,
            forbidden_paths=forbidden_paths,
            _seen=_seen | {normalized},
        )

    return PathValidation(valid=True, resolved_path=normalized)


def validate_path_comprehensive(
    requested: str,
    *,
    workspace_root: str | None = None,
    max_length: int = DEFAULT_MAX_PATH_LENGTH,
    check_sensitive: bool = False,
    forbidden_paths: Sequence[str] = FORBIDDEN_PATHS,
) -> PathValidation:
    length = validate_path_length(requested, max_length)
    if not length.valid:
        return length

    result = validate_path(requested, workspace_root, forbidden_paths=forbidden_paths)
    if not result.valid:
        return result

    if check_sensitive:
        pattern = check_sensitive_file(requested)
        if pattern is not None:
            return PathValidation(
                valid=False, error=f"Path contains sensitive pattern: {pattern.pattern}"
            )

    return result


class ProjectResolver(Protocol):
    def resolve(self, project: str) -> Path:
        """Return the absolute, validated project directory or raise `PathError`."""
        ...


class DirectoryProjectResolver:
    """Resolve project identifiers to directories under a projects root.

    Without a root, identifiers must be absolute paths.
    """

    def __init__(
        self,
        projects_root: Path | None = None,
        *,
        max_length: int = 2048,
        forbidden_paths: Sequence[str] = FORBIDDEN_PATHS,
    ) -> None:
        self._root = projects_root
        self._max_length = max_length
        self._forbidden_paths = tuple(forbidden_paths)

    def project_path(self, project: str) -> str:
        name = project.strip()
        if not name:
            raise PathError("Project name is required", project=project)
        if self._root is None:
            if not os.path.isabs(name):
                raise PathError(
                    "Project must be an absolute path when CI_PROJECTS_ROOT is not set",
                    project=project,
                )
            return name
        if os.path.isabs(name) or ".." in Path(name).parts:
            raise PathError("Invalid project path", project=project)
        return str(self._root / name)

    def resolve(self, project: str) -> Path:
        candidate = self.project_path(project)
        validation = validate_path_comprehensive(
            candidate,
            workspace_root=str(self._root) if self._root is not None else None,
            max_length=self._max_length,
            check_sensitive=True,
            forbidden_paths=self._forbidden_paths,
        )
        if not validation.valid or not validation.resolved_path:
            logger.warning(
                "Project path rejected", extra={"project": project, "reason": validation.error}
            )
            raise PathError(validation.error or "Invalid project path", project=project)

        resolved = Path(validation.resolved_path)
        if not resolved.exists():
            raise PathError(f"Project path not found: {resolved}", project=project)
        if not resolved.is_dir():
            raise PathError(f"Project path is not a directory: {resolved}", project=project)
        return resolved


class StaticProjectResolver:
    """Resolve every project identifier to one explicitly chosen directory.

    Used by the CLI, where the operator names the directory directly.
    """

    def __init__(self, project_dir: Path) -> None:
        self._project_dir = project_dir

    def resolve(self, project: str) -> Path:
        resolved = self._project_dir.expanduser().resolve()
        if not resolved.is_dir():
            raise PathError(f"Project path not found: {resolved}", project=project)
        return resolved


def resolve_working_directory(project_dir: Path, requested: str | None) -> Path:
    """Join a workflow-authored working directory onto the project directory.

    The result is symlink-resolved and must stay inside `project_dir` and exist.
    """

    if requested is None or requested.strip() in {"", ".", "./"}:
        return project_dir

    root = project_dir.resolve()
    candidate = (root / requested).resolve()
    if not candidate.is_relative_to(root):
        raise InvalidWorkingDirectory(
            requested=requested, message="resolves outside of the project root"
        )
    if not candidate.is_dir():
        raise InvalidWorkingDirectory(
            requested=requested, message="does not exist within the project"
        )
    return candidate
