from __future__ import annotations

from pathlib import Path

import typer

from iwa.cli.commands._helpers import unwrap_or_exit
from iwa.cli.context import build_context
from iwa.output.console import Style
from iwa.services.document import asset_url
from iwa.services.publisher import list_bundles, publish_with_retry


def publish(
    source_dir: Path = typer.Argument(..., help="Build output directory to publish"),
    version: str | None = typer.Option(
        None, "--version", "-v", help="Version tag (default: content fingerprint)"
    ),
    env_var: list[str] = typer.Option(
        [], "--env-var", "-e", help="Variable NAME the bundle expects at release time"
    ),
    entry: list[str] = typer.Option(
        [], "--entry", help="File to load first, in order (repeatable, e.g. runtime.js)"
    ),
    retries: int | None = typer.Option(
        None, "--retries", help="Attempts on transient storage errors (default: from iwa.toml)"
    ),
) -> None:
    """Publish a build output directory as an immutable bundle."""
    ctx = build_context()
    attempts = retries if retries is not None else ctx.config.release.publish_retries

    outcome = unwrap_or_exit(
        publish_with_retry(
            attempts=attempts,
            store=ctx.store,
            source_dir=source_dir,
            env_var_names=env_var,
            console=ctx.console,
            version_tag=version,
            entries=entry,
            policy=ctx.policy,
            lock_timeout=ctx.config.release.lock_timeout,
        ),
        ctx,
    )

    bundle = outcome.bundle
    first = bundle.files[0].path
    ctx.console.print(f"version: {bundle.version}", Style.BOLD)
    ctx.console.print(
        f"url:     {asset_url(ctx.config.storage.base_url, bundle.version, first)}", Style.DIM
    )


def bundles() -> None:
    """List published bundles, oldest first."""
    ctx = build_context()
    published = unwrap_or_exit(list_bundles(ctx.store), ctx)
    if not published:
        ctx.console.info("no bundles published yet")
        return

    rows = [
        (
            b.version,
            b.published_at.strftime("%Y-%m-%d %H:%M:%S"),
            str(len(b.files)),
            ", ".join(b.env_var_names) or "-",
        )
        for b in published
    ]
    ctx.console.table(("version", "published (UTC)", "files", "env vars"), rows)
