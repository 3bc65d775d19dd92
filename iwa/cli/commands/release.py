from __future__ import annotations

from pathlib import Path

import typer

from iwa.cli.commands._helpers import collect_variables, unwrap_or_exit
from iwa.cli.context import build_context
from iwa.output.console import Style
from iwa.platform.files import atomic_write_text
from iwa.services.releaser import release, render_only, rollback


def release_cmd(
    environment: str = typer.Argument(..., help="Environment name (e.g. prod)"),
    bundle: str = typer.Option(..., "--bundle", "-b", help="Published bundle version"),
    var: list[str] = typer.Option([], "--var", help="Variable assignment KEY=VALUE"),
    vars_file: Path | None = typer.Option(
        None, "--vars-file", help="Flat TOML or JSON table of variables"
    ),
) -> None:
    """Swap the environment document to a published bundle."""
    ctx = build_context()
    variables = collect_variables(ctx, assignments=var, vars_file=vars_file)
    outcome = unwrap_or_exit(
        release(
            store=ctx.store,
            registry=ctx.registry,
            environment=environment,
            bundle_version=bundle,
            variables=variables,
            base_url=ctx.config.storage.base_url,
            console=ctx.console,
            lock_timeout=ctx.config.release.lock_timeout,
        ),
        ctx,
    )
    if outcome.record.kind == "rollback":
        ctx.console.warning(f"bundle {bundle} predates the previous release (rollback)")


def rollback_cmd(
    environment: str = typer.Argument(..., help="Environment name"),
    to: int | None = typer.Option(
        None, "--to", help="Release seq to restore (default: previous bundle)"
    ),
) -> None:
    """Release an earlier record's bundle and variables again."""
    ctx = build_context()
    outcome = unwrap_or_exit(
        rollback(
            store=ctx.store,
            registry=ctx.registry,
            environment=environment,
            base_url=ctx.config.storage.base_url,
            console=ctx.console,
            to_seq=to,
            lock_timeout=ctx.config.release.lock_timeout,
        ),
        ctx,
    )
    if outcome.previous is not None:
        ctx.console.print(f"superseded {outcome.previous.record_id}", Style.DIM)


def render_cmd(
    environment: str = typer.Argument(..., help="Environment name"),
    bundle: str = typer.Option(..., "--bundle", "-b", help="Published bundle version"),
    var: list[str] = typer.Option([], "--var", help="Variable assignment KEY=VALUE"),
    vars_file: Path | None = typer.Option(None, "--vars-file", help="Variables file"),
    out: Path | None = typer.Option(None, "--out", "-o", help="Write to file instead of stdout"),
) -> None:
    """Render an environment document without releasing it."""
    ctx = build_context()
    variables = collect_variables(ctx, assignments=var, vars_file=vars_file)
    document = unwrap_or_exit(
        render_only(
            store=ctx.store,
            environment=environment,
            bundle_version=bundle,
            variables=variables,
            base_url=ctx.config.storage.base_url,
        ),
        ctx,
    )
    if out is None:
        typer.echo(document.html, nl=False)
        return
    atomic_write_text(out, document.html)
    ctx.console.success(str(out))
