from __future__ import annotations

import os
from pathlib import Path

import typer

from iwa import __version__
from iwa.cli.commands.history import history, prune, status
from iwa.cli.commands.publish import bundles, publish
from iwa.cli.commands.release import release_cmd, render_cmd, rollback_cmd
from iwa.cli.commands.serve import serve
from iwa.cli.context import QUIET_ENV_VAR
from iwa.core.errors import ErrorCode
from iwa.core.project import PROJECT_ENV_VAR, is_project_root


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# Commands
app.command()(publish)
app.command()(bundles)
app.command("release")(release_cmd)
app.command("rollback")(rollback_cmd)
app.command("render")(render_cmd)
app.command()(status)
app.command()(history)
app.command()(prune)
app.command()(serve)


@app.callback()
def _main(  # pyright: ignore[reportUnusedFunction]
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
    project: Path | None = typer.Option(
        None,
        "--project",
        help="Project root containing iwa.toml (overrides auto detection)",
    ),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only print errors."),
) -> None:
    if version:
        typer.echo(__version__)
        raise typer.Exit(code=0)

    if quiet:
        os.environ[QUIET_ENV_VAR] = "1"

    if project is not None:
        try:
            root = project.expanduser().resolve()
        except OSError as e:
            typer.echo(f"error: invalid --project: {e}", err=True)
            raise typer.Exit(code=int(ErrorCode.USER_ERROR))

        if not root.is_dir() or not is_project_root(root):
            typer.echo(
                f"error: --project '{root}' is not a project (missing iwa.toml)",
                err=True,
            )
            raise typer.Exit(code=int(ErrorCode.PROJECT_ERROR))

        os.environ[PROJECT_ENV_VAR] = str(root)


def main() -> None:
    app()
