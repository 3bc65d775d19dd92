from __future__ import annotations

import os
from dataclasses import dataclass

import typer

from iwa.core.config import Config, load_config
from iwa.core.errors import ErrorCode
from iwa.core.project import Project, detect_project
from iwa.core.result import Err
from iwa.output.console import ConsoleProtocol, QuietConsole, RichConsole
from iwa.services.policy import EnvPolicy
from iwa.services.registry import ReleaseRegistry
from iwa.services.storage import FileSystemStore

QUIET_ENV_VAR = "IWA_QUIET"


@dataclass(frozen=True, slots=True)
class CLIContext:
    project: Project
    config: Config
    console: ConsoleProtocol
    store: FileSystemStore
    registry: ReleaseRegistry

    @property
    def policy(self) -> EnvPolicy:
        return EnvPolicy.from_config(self.config.policy)


def build_console() -> ConsoleProtocol:
    if os.environ.get(QUIET_ENV_VAR) == "1":
        return QuietConsole()
    return RichConsole()


def build_context() -> CLIContext:
    project_result = detect_project()
    if isinstance(project_result, Err):
        typer.echo(f"error: {project_result.error.message}", err=True)
        typer.echo("hint: create an iwa.toml or pass --project", err=True)
        raise typer.Exit(code=int(ErrorCode.PROJECT_ERROR))
    project = project_result.value

    config_result = load_config(project.config_path)
    if isinstance(config_result, Err):
        typer.echo(f"error: {config_result.error.message}", err=True)
        raise typer.Exit(code=int(ErrorCode.PROJECT_ERROR))
    config = config_result.value

    return CLIContext(
        project=project,
        config=config,
        console=build_console(),
        store=FileSystemStore(project.storage_root(config)),
        registry=ReleaseRegistry(
            project.state_dir(config), lock_timeout=config.release.lock_timeout
        ),
    )
