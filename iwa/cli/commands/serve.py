from __future__ import annotations

import typer

from iwa.cli.commands._helpers import unwrap_or_exit
from iwa.cli.context import build_context
from iwa.core.errors import ErrorCode
from iwa.output.console import Style
from iwa.services.layout import validate_environment_name
from iwa.services.serve import make_server


def serve(
    environment: str = typer.Argument(..., help="Environment to serve"),
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8080, "--port", "-p", help="Bind port"),
) -> None:
    """Serve one environment locally: bundle assets plus its document."""
    ctx = build_context()
    unwrap_or_exit(validate_environment_name(environment), ctx)

    try:
        server = make_server(
            store=ctx.store,
            environment=environment,
            host=host,
            port=port,
            console=ctx.console,
        )
    except OSError as e:
        ctx.console.error(f"cannot bind {host}:{port}: {e}")
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))

    ctx.console.success(f"serving {environment} on http://{host}:{port}/")
    ctx.console.print("assets are served from the local store; Ctrl+C to stop", Style.DIM)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        ctx.console.newline()
    finally:
        server.server_close()
