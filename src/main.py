"""
HomeRoute — CLI entrypoint.

Usage:
    python -m src.main --help
    python -m src.main status
    python -m src.main config check
    python -m src.main proxy push
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from src import __version__
from src.core.observability.logging_config import setup_logging
from src.ui.cli.common import resolve_settings


@click.group()
@click.version_option(version=__version__, prog_name="homeroute")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to homeroute.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """HomeRoute — reverse proxy routing for a home server."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = None  # HOMEROUTE_LOG_LEVEL or WARNING

    setup_logging(level=level, quiet_third_party=not debug)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show the registry summary and the routes it compiles to."""
    from src.core.persistence.registry_file import RegistryError, load_registry
    from src.core.services.route_compiler import compile_routes

    settings = resolve_settings(ctx)
    try:
        registry = load_registry(settings.registry_path)
    except RegistryError as e:
        if as_json:
            click.echo(json.dumps({"error": str(e)}, indent=2))
        else:
            click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    routes = compile_routes(registry, settings)

    if as_json:
        click.echo(json.dumps({
            "registryPath": str(settings.registry_path),
            "version": registry.version,
            "baseDomain": registry.base_domain,
            "environments": [e.to_json() for e in registry.environments],
            "routes": [r.to_dict() for r in routes],
        }, indent=2))
        return

    quiet = ctx.obj.get("quiet", False)
    if not quiet:
        click.secho(f"\n📋 {registry.base_domain or '(no base domain)'}", fg="cyan", bold=True)
        click.echo(f"   Registry: {settings.registry_path} (v{registry.version})")
        click.echo()

    click.secho(f"   Environments: {len(registry.environments)}", fg="white", bold=True)
    for env in registry.environments:
        default = " (default)" if env.is_default else ""
        prefix = env.prefix or "-"
        click.echo(f"     • {env.name}{default}  prefix={prefix} api={env.api_prefix}")

    click.echo()
    click.secho(f"   Routes: {len(routes)}", fg="white", bold=True)
    for route in routes:
        flags = []
        if route.require_auth:
            flags.append("auth")
        if route.local_only:
            flags.append("local")
        if route.system:
            flags.append("system")
        label = f" [{', '.join(flags)}]" if flags else ""
        click.echo(f"     • {route.domain} → {route.upstream}{label}")

    click.echo()


@cli.group()
def config() -> None:
    """Registry configuration commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate the stored registry document."""
    from src.core.use_cases.config_check import check_registry

    result = check_registry(resolve_settings(ctx).registry_path)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)
        return

    if result.valid:
        assert result.registry is not None  # guaranteed when valid
        click.secho("✅ Registry is valid", fg="green", bold=True)
        click.echo(f"   Base domain: {result.registry.base_domain or '-'}")
        click.echo(f"   Hosts: {len(result.registry.hosts)}")
        click.echo(f"   Applications: {len(result.registry.applications)}")
        click.echo(f"   Environments: {len(result.registry.environments)}")
    else:
        click.secho("❌ Registry errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    if not result.valid:
        click.echo()
        sys.exit(1)

    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def health(ctx: click.Context, as_json: bool) -> None:
    "Show system health — registry and proxy control plane."
    from src.core.observability.health import check_system_health

    system_health = check_system_health(resolve_settings(ctx))

    if as_json:
        click.echo(json.dumps(system_health.to_dict(), indent=2))
        return

    status_icons = {
        "healthy": ("💚", "green"),
        "degraded": ("🟡", "yellow"),
        "unhealthy": ("🔴", "red"),
        "unknown": ("❔", "white"),
    }
    icon, color = status_icons.get(system_health.status, ("❔", "white"))

    click.echo()
    click.secho(f"{icon} System Health: {system_health.status.upper()}", fg=color, bold=True)
    click.echo(f"   {system_health.timestamp}")
    click.echo()

    for comp in system_health.components:
        c_icon, c_color = status_icons.get(comp.status, ("❔", "white"))
        click.secho(f"   {c_icon} {comp.name}: ", fg=c_color, nl=False)
        click.echo(comp.message)

    click.echo()


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address.")
@click.option("--port", "-p", default=8000, type=int, help="Port number.")
@click.option("--sync/--no-sync", default=True, help="Push the registry to the proxy on startup.")
@click.pass_context
def web(ctx: click.Context, host: str, port: int, sync: bool) -> None:
    "Start the routing API server."
    from src.ui.web.server import create_app, run_server

    settings = resolve_settings(ctx)
    app = create_app(settings=settings, sync_on_start=sync)

    debug = ctx.obj.get("debug", False)

    click.echo()
    click.secho("⚡ HomeRoute — Routing API", bold=True)
    click.echo(f"   API:      http://{host}:{port}/api/reverseproxy")
    click.echo(f"   Registry: {settings.registry_path}")
    click.echo(f"   Proxy:    {settings.proxy_admin_url}")
    if debug:
        click.secho("   Logging: DEBUG (all output)", fg="yellow")
    click.echo()

    run_server(app, host=host, port=port, debug=debug)


# ── Register sub-command groups from src/ui/cli/ ──────────────────

from src.ui.cli.proxy import proxy  # noqa: E402

cli.add_command(proxy)


if __name__ == "__main__":
    cli()
