from __future__ import annotations

from itertools import islice

import typer

from iwa.cli.commands._helpers import require_positive, unwrap_or_exit
from iwa.cli.context import CLIContext, build_context
from iwa.core.errors import ErrorCode
from iwa.core.result import Err, Ok
from iwa.output.console import Style
from iwa.output.errors import print_deploy_error
from iwa.services.errors import NoReleaseYet, StorageUnavailableError
from iwa.services.model import ReleaseRecord, format_timestamp


def _record_row(record: ReleaseRecord) -> tuple[str, ...]:
    return (
        str(record.seq),
        record.state,
        record.kind,
        record.bundle_version,
        record.released_at.strftime("%Y-%m-%d %H:%M:%S"),
        ", ".join(sorted(record.variables)) or "-",
    )


_RECORD_COLUMNS = ("seq", "state", "kind", "bundle", "released (UTC)", "variables")


def status(
    environment: str | None = typer.Argument(None, help="Environment (default: all)"),
) -> None:
    """Show which bundle each environment serves."""
    ctx = build_context()
    if environment is not None:
        _status_one(ctx, environment)
        return

    names = ctx.registry.environments()
    if not names:
        ctx.console.info("no releases yet")
        return

    rows: list[tuple[str, ...]] = []
    for name in names:
        match ctx.registry.active_release(name):
            case Ok(record):
                rows.append((name, record.bundle_version, str(record.seq), record.kind))
            case Err(NoReleaseYet()):
                rows.append((name, "-", "-", "-"))
            case Err(error):
                print_deploy_error(error, ctx.console)
                raise typer.Exit(code=int(ErrorCode.STORAGE_ERROR))
    ctx.console.table(("environment", "bundle", "seq", "kind"), rows)


def _status_one(ctx: CLIContext, environment: str) -> None:
    record = unwrap_or_exit(ctx.registry.active_release(environment), ctx)
    ctx.console.header(environment)
    ctx.console.print(f"bundle:   {record.bundle_version}", Style.BOLD)
    ctx.console.print(f"record:   {record.record_id} ({record.kind})")
    ctx.console.print(f"released: {format_timestamp(record.released_at)}", Style.DIM)
    for name in sorted(record.variables):
        ctx.console.print(f"  {name} = {record.variables[name]!r}", Style.DIM)


def history(
    environment: str = typer.Argument(..., help="Environment name"),
    limit: int = typer.Option(20, "--limit", "-n", help="Show at most N records"),
) -> None:
    """List an environment's releases, newest first."""
    ctx = build_context()
    require_positive(limit, name="--limit")

    releases = unwrap_or_exit(ctx.registry.history(environment), ctx)
    try:
        records = list(islice(releases, limit))
    except (OSError, ValueError) as e:
        error = StorageUnavailableError(operation="read", key=environment, reason=str(e))
        unwrap_or_exit(Err(error), ctx)
        return

    if not records:
        ctx.console.info(f"no releases in {environment}")
        return
    ctx.console.table(_RECORD_COLUMNS, [_record_row(r) for r in records])


def prune(
    environment: str = typer.Argument(..., help="Environment name"),
    keep: int | None = typer.Option(
        None, "--keep", help="Records to keep (default: release.retention)"
    ),
) -> None:
    """Delete superseded release records beyond the newest N."""
    ctx = build_context()
    count = keep if keep is not None else ctx.config.release.retention
    if count == 0:
        ctx.console.error("retention is unlimited; pass --keep N")
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))
    require_positive(count, name="--keep")

    removed = unwrap_or_exit(ctx.registry.prune(environment, keep=count), ctx)
    if not removed:
        ctx.console.info("nothing to prune")
        return
    ctx.console.success(f"removed {len(removed)} record(s) from {environment}")
    ctx.console.print(", ".join(f"#{seq}" for seq in removed), Style.DIM)
