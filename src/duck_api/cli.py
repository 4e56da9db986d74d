"""
duck-api command line.

Commands:
  serve    Serve the API with uvicorn
  routes   List every bound operation
  openapi  Print the OpenAPI document of a router
"""

from __future__ import annotations

import json
import platform
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from duck_api._version import get_version
from duck_api.core.config import ApiConfig, load_config
from duck_api.core.errors import ConfigurationError
from duck_api.runtime.logging import setup_logging
from duck_api.runtime.openapi import endpoints_to_openapi
from duck_api.runtime.server import ROUTER_NAMES, DuckApiApp

app = typer.Typer(
    help="duck-api: CRUD HTTP and WebSocket APIs from schema-described entities",
    no_args_is_help=True,
)

console = Console()

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="duck-api.toml file or the directory holding it"),
]


def version_callback(value: bool) -> None:
    """Display version and environment information."""
    if value:
        typer.echo(f"duck-api {get_version()}")
        typer.echo(f"Python {platform.python_version()} ({platform.python_implementation()})")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-v",
            callback=version_callback,
            is_eager=True,
            help="Show version and environment information",
        ),
    ] = None,
) -> None:
    """duck-api CLI main callback for global options."""


def _load(config_path: Path | None) -> ApiConfig:
    try:
        return load_config(config_path)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e


def _build(config: ApiConfig) -> DuckApiApp:
    builder = DuckApiApp(config)
    try:
        builder.build()
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e
    return builder


@app.command()
def serve(
    config_path: ConfigOption = None,
    host: Annotated[str | None, typer.Option("--host", help="Host to bind to")] = None,
    port: Annotated[int | None, typer.Option("--port", "-p", help="Port to bind to")] = None,
    swagger: Annotated[
        bool | None, typer.Option("--swagger/--no-swagger", help="Serve swagger.json and docs")
    ] = None,
) -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    config = _load(config_path)
    if host is not None:
        config.host = host
    if port is not None:
        config.port = port
    if swagger is not None:
        config.with_swagger = swagger

    setup_logging(config.log_dir, config.log_level)
    builder = _build(config)
    console.print(f"[green]duck-api[/green] listening on http://{config.host}:{config.port}")
    uvicorn.run(builder.app, host=config.host, port=config.port)


@app.command()
def routes(
    config_path: ConfigOption = None,
    output_json: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """List every bound path and verb."""
    builder = _build(_load(config_path))
    bindings = builder.bindings()

    if output_json:
        typer.echo(
            json.dumps(
                [
                    {"verb": verb, "path": path, "description": description}
                    for verb, path, description in bindings
                ],
                indent=2,
            )
        )
        return

    if not bindings:
        console.print("[dim]No routes bound.[/dim]")
        return

    table = Table(title="Routes")
    table.add_column("Verb", style="bold")
    table.add_column("Path")
    table.add_column("Description", style="dim")
    for verb, path, description in bindings:
        table.add_row(verb, path, description or "")

    console.print(table)
    console.print(f"\n[dim]{len(bindings)} operation(s)[/dim]")


@app.command()
def openapi(
    router: Annotated[
        str, typer.Argument(help=f"Router to document: {', '.join(ROUTER_NAMES)}")
    ] = "domain",
    config_path: ConfigOption = None,
    output: Annotated[
        Path | None, typer.Option("--output", "-o", help="Write to a file instead of stdout")
    ] = None,
) -> None:
    """Print the OpenAPI document of one router."""
    if router not in ROUTER_NAMES:
        choices = ", ".join(ROUTER_NAMES)
        console.print(f"[red]Unknown router '{router}'.[/red] Choose one of {choices}")
        raise typer.Exit(1)

    config = _load(config_path)
    builder = _build(config)
    document = endpoints_to_openapi(
        builder.endpoints[router],
        prefix=builder.routers[router].prefix or "/",
        title=config.title,
        version=config.version,
        description=config.description,
    )
    rendered = json.dumps(document, indent=2, default=str)

    if output is not None:
        output.write_text(rendered + "\n", encoding="utf-8")
        console.print(f"[green]Wrote[/green] {output}")
        return
    typer.echo(rendered)


def main(argv: list[str] | None = None) -> None:
    app(args=argv, standalone_mode=True)


if __name__ == "__main__":
    main()
