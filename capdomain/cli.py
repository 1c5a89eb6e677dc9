"""CLI for Capability Domain - serve, inspect and run capabilities."""

from __future__ import annotations

import json
import os
from pathlib import Path

import click

from capdomain import __version__
from capdomain.config import Settings, configure_logging, load_settings
from capdomain.errors import CapabilityError
from capdomain.registry import CapabilityRegistry


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def _build_registry(settings: Settings) -> CapabilityRegistry:
    registry = CapabilityRegistry.from_settings(settings)
    try:
        registry.initialize()
    except CapabilityError as e:
        raise click.ClickException(str(e)) from e
    return registry


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.version_option(version=__version__, prog_name="capdomain")
@click.option(
    "--domains", "-d",
    "domains_path",
    default=None,
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    help="Domains directory holding skills/ and mcps/ (overrides CAPDOMAIN_DOMAINS_PATH)",
)
@click.option("--log-level", default=None, help="Logging level (e.g. DEBUG, INFO)")
@click.pass_context
def main(ctx: click.Context, domains_path: Path | None, log_level: str | None) -> None:
    """Capability Domain - one capability surface for agents.

    Aggregates local skills, remote MCP tools and code execution.
    """
    try:
        settings = load_settings()
    except CapabilityError as e:
        raise click.ClickException(str(e)) from e

    settings = settings.with_overrides(
        domains_path=domains_path,
        log_level=log_level.upper() if log_level else None,
    )
    configure_logging(settings.log_level)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@main.command()
@click.option("--port", default=None, type=int, help="Port to run the broker on")
@click.option("--host", default=None, help="Host to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
@click.pass_context
def serve(ctx: click.Context, port: int | None, host: str | None, reload: bool) -> None:
    """Start the capability HTTP broker."""
    import uvicorn

    settings = _settings(ctx).with_overrides(host=host, port=port)
    # The broker builds its registry from the environment in the server process.
    os.environ["CAPDOMAIN_DOMAINS_PATH"] = str(settings.domains_path)
    os.environ["CAPDOMAIN_LOG_LEVEL"] = settings.log_level

    click.echo(f"Starting capability broker on {settings.host}:{settings.port}")
    uvicorn.run(
        "capdomain.broker:app",
        host=settings.host,
        port=settings.port,
        reload=reload,
    )


@main.command(name="list")
@click.option("--raw", is_flag=True, help="Output JSON instead of markdown")
@click.pass_context
def list_command(ctx: click.Context, raw: bool) -> None:
    """List every available capability.

    \b
    Example:
        capdomain --domains ./domains list
    """
    registry = _build_registry(_settings(ctx))

    if raw:
        _echo_json([entry.model_dump(mode="json") for entry in registry.list_entries()])
        return

    click.echo(registry.list_capabilities())


@main.command()
@click.argument("names", nargs=-1, required=True)
@click.pass_context
def describe(ctx: click.Context, names: tuple[str, ...]) -> None:
    """Show details for one or more capabilities.

    \b
    Example:
        capdomain describe code-reviewer search
    """
    registry = _build_registry(_settings(ctx))
    details = registry.describe(list(names))

    missing = set(names) - {detail.name for detail in details} - {
        getattr(detail, "id", None) for detail in details
    }
    for name in sorted(missing):
        click.echo(f"Unknown capability: {name}", err=True)

    _echo_json([detail.model_dump(mode="json") for detail in details])


def _parse_input(raw: str | None) -> dict | None:
    if raw is None:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--input") from e
    if not isinstance(parsed, dict):
        raise click.BadParameter("must be a JSON object", param_hint="--input")
    return parsed


def _read_batch(batch_file: Path) -> list:
    try:
        items = json.loads(batch_file.read_text())
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--batch") from e
    if not isinstance(items, list):
        raise click.BadParameter("must hold a JSON array of {name, input} objects", param_hint="--batch")
    return items


@main.command()
@click.argument("name", required=False)
@click.option("--input", "-i", "raw_input", default=None, help="JSON object passed as the capability input")
@click.option(
    "--batch", "-b",
    "batch_file",
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON file holding an array of {name, input} items",
)
@click.pass_context
def execute(ctx: click.Context, name: str | None, raw_input: str | None, batch_file: Path | None) -> None:
    """Execute one capability, or a batch from a file.

    Exits with status 1 when any item fails.

    \b
    Example:
        capdomain execute execute-python --input '{"code": "print(1)"}'
        capdomain execute --batch items.json
    """
    if (name is None) == (batch_file is None):
        raise click.UsageError("Provide either a capability NAME or --batch FILE")

    if batch_file is not None:
        items = _read_batch(batch_file)
    else:
        items = [{"name": name, "input": _parse_input(raw_input)}]

    registry = _build_registry(_settings(ctx))
    results = registry.execute_batch(items)
    _echo_json([result.model_dump(mode="json") for result in results])

    if not all(result.success for result in results):
        ctx.exit(1)


@main.command()
@click.pass_context
def files(ctx: click.Context) -> None:
    """List files produced by code execution."""
    from capdomain.backends.code_runner import CodeRunner

    runner = CodeRunner(scratch_dir=_settings(ctx).scratch_dir)
    listing = runner.list_files()

    if not listing:
        click.echo("No generated files.")
        return

    for item in listing:
        click.echo(f"  {item.name} ({item.size} bytes, {item.created}) {item.download_url}")


@main.command()
def mcp() -> None:
    """Run the MCP server that exposes the broker to an agent.

    \b
    Configure in .mcp.json:
        {
            "mcpServers": {
                "capdomain": {
                    "command": "capdomain",
                    "args": ["mcp"]
                }
            }
        }
    """
    from mcp_capdomain.server import mcp as mcp_server
    mcp_server.run()


if __name__ == "__main__":
    main()
