"""Project detection and paths.

A project is the directory holding `iwa.toml`. Storage, registry state and
locks live under paths resolved relative to it, so every command run inside
the project tree agrees on where bundles and releases are.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from .config import CONFIG_FILENAME, Config
from .result import Err, Ok, Result

__all__ = [
    "Project",
    "ProjectError",
    "ProjectSource",
    "PROJECT_ENV_VAR",
    "detect_project",
    "find_project_upward",
    "is_project_root",
]

PROJECT_ENV_VAR = "IWA_PROJECT_ROOT"

ProjectSource = Literal["option", "env", "cwd"]


@dataclass(frozen=True)
class ProjectError:
    """Error when the project root cannot be detected."""

    message: str
    searched_from: Path | None = None


@dataclass(frozen=True, slots=True)
class Project:
    root: Path
    source: ProjectSource = "cwd"

    @property
    def config_path(self) -> Path:
        return self.root / CONFIG_FILENAME

    def storage_root(self, config: Config) -> Path:
        """Object store root (bundles, documents, locks)."""
        return self._resolve(config.storage.root)

    def state_dir(self, config: Config) -> Path:
        """Release registry state directory."""
        return self._resolve(config.release.state_dir)

    def _resolve(self, value: str) -> Path:
        p = Path(value).expanduser()
        if p.is_absolute():
            return p
        return self.root / p

    def __str__(self) -> str:
        return str(self.root)


def is_project_root(path: Path) -> bool:
    return (path / CONFIG_FILENAME).is_file()


def find_project_upward(start: Path) -> Path | None:
    """Search upward from start for a directory holding iwa.toml."""
    for parent in (start, *start.parents):
        if is_project_root(parent):
            return parent
    return None


def detect_project(
    *,
    explicit: Path | None = None,
    start_dir: Path | None = None,
    env_var: str = PROJECT_ENV_VAR,
) -> Result[Project, ProjectError]:
    """Detect the project root.

    Detection order:
    1. explicit path (the --project option)
    2. IWA_PROJECT_ROOT environment variable
    3. search upward from start_dir (or cwd) for iwa.toml
    """
    if explicit is not None:
        root = explicit.expanduser().resolve()
        if root.is_dir() and is_project_root(root):
            return Ok(Project(root=root, source="option"))
        return Err(
            ProjectError(
                message=f"'{root}' is not a project ({CONFIG_FILENAME} not found)",
                searched_from=root if root.is_dir() else None,
            )
        )

    env_value = os.environ.get(env_var)
    if env_value:
        env_path = Path(env_value).expanduser().resolve()
        if env_path.is_dir() and is_project_root(env_path):
            return Ok(Project(root=env_path, source="env"))
        return Err(
            ProjectError(
                message=f"${env_var} is set to '{env_value}' but it is not a project",
                searched_from=env_path if env_path.is_dir() else None,
            )
        )

    search_start = (start_dir or Path.cwd()).resolve()
    found = find_project_upward(search_start)
    if found is None:
        return Err(
            ProjectError(
                message=f"Could not find project ({CONFIG_FILENAME} not found)",
                searched_from=search_start,
            )
        )
    return Ok(Project(root=found, source="cwd"))
