"""Shared helpers for CLI commands."""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

import typer

from iwa.core.errors import ErrorCode
from iwa.core.result import Err, Result
from iwa.output.errors import deploy_error_exit_code, print_deploy_error
from iwa.services.errors import DeployError
from iwa.services.variables import load_vars_file, parse_var_assignments

if TYPE_CHECKING:
    from pathlib import Path

    from iwa.cli.context import CLIContext
    from iwa.services.model import Variables


T = TypeVar("T")


def unwrap_or_exit(result: Result[T, DeployError], ctx: CLIContext) -> T:
    """Return the Ok value, or print the error and exit with its code.

    Replaces the common pattern:
        match result:
            case Err(e):
                print_deploy_error(e, ctx.console)
                raise typer.Exit(code=deploy_error_exit_code(e))
            case Ok(value):
                ...
    """
    if isinstance(result, Err):
        print_deploy_error(result.error, ctx.console)
        raise typer.Exit(code=deploy_error_exit_code(result.error))
    return result.value


def collect_variables(
    ctx: CLIContext, *, assignments: list[str], vars_file: Path | None
) -> Variables:
    """Merge --vars-file then --var assignments (later wins)."""
    merged: Variables = {}
    if vars_file is not None:
        merged.update(unwrap_or_exit(load_vars_file(vars_file), ctx))
    merged.update(unwrap_or_exit(parse_var_assignments(assignments), ctx))
    return merged


def require_positive(value: int, *, name: str) -> None:
    if value < 1:
        typer.echo(f"error: {name} must be >= 1", err=True)
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))
