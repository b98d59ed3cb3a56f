"""
CLI commands for the edge proxy.

Thin wrappers over ``src.core.services.registry_ops`` and the compiler.
"""

from __future__ import annotations

import json
import sys

import click

from src.ui.cli.common import resolve_settings


def _report(result: dict, success_text: str) -> None:
    """Print a mutation/reload result; exit 1 on failure."""
    if not result.get("success"):
        click.secho(f"❌ {result.get('error')}", fg="red")
        sys.exit(1)

    click.secho(f"✅ {success_text}", fg="green")
    if result.get("applied") is False or result.get("applyError"):
        click.secho(f"   ⚠️  Saved but not applied: {result.get('applyError')}", fg="yellow")
    elif result.get("converged") is False:
        click.secho("   ⚠️  Pushed, but the proxy does not report every route yet", fg="yellow")


@click.group("proxy")
def proxy() -> None:
    """Edge proxy — compile, push, status, and certificates."""


# ── Compile ─────────────────────────────────────────────────────


@proxy.command("compile")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output the full document.")
@click.pass_context
def compile_cmd(ctx: click.Context, as_json: bool) -> None:
    """Compile the registry without pushing it."""
    from src.core.services.registry_ops import compiled_preview

    result = compiled_preview(resolve_settings(ctx))
    if not result["success"]:
        click.secho(f"❌ {result['error']}", fg="red")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(result["config"], indent=2))
        return

    tls = result["config"]["apps"]["tls"]
    strategy = "wildcard (DNS-01)" if tls.get("certificates") else "per-host"

    click.secho(f"🧭 Compiled routes ({len(result['routes'])}):", fg="cyan", bold=True)
    for route in result["routes"]:
        click.echo(f"   {route['id']:<40} {route['domain']} → {route['upstream']}")
    click.echo()
    click.echo(f"   🔒 TLS: {strategy}")


# ── Push ────────────────────────────────────────────────────────


@proxy.command("push")
@click.pass_context
def push(ctx: click.Context) -> None:
    """Recompile the registry and load it into the proxy."""
    from src.core.services.registry_ops import reload_proxy

    result = reload_proxy(resolve_settings(ctx))
    if not result.get("success"):
        click.secho(f"❌ {result.get('error')}", fg="red")
        sys.exit(1)

    applied = result["apply"]
    click.secho(
        f"✅ Pushed {applied['routes']} routes ({applied['durationMs']}ms)",
        fg="green",
    )
    if applied.get("converged") is False:
        click.secho("   ⚠️  The proxy does not report every pushed route", fg="yellow")


# ── Status ──────────────────────────────────────────────────────


@proxy.command("status")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show whether the proxy's admin endpoint is reachable."""
    from src.core.services.registry_ops import proxy_status

    result = proxy_status(resolve_settings(ctx))["proxy"]

    if as_json:
        click.echo(json.dumps(result, indent=2))
        return

    if not result["reachable"]:
        click.secho(f"🔴 Unreachable: {result['adminUrl']}", fg="red")
        click.echo(f"   {result.get('error', '')}")
        sys.exit(1)

    if result["loaded"]:
        click.secho(f"💚 {result['adminUrl']} — {result['routes']} routes loaded", fg="green")
    else:
        click.secho(f"🟡 {result['adminUrl']} — no configuration loaded", fg="yellow")
    click.echo(f"   Latency: {result['latencyMs']}ms")


# ── Certificates ────────────────────────────────────────────────


@proxy.command("certs")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def certs(ctx: click.Context, as_json: bool) -> None:
    """Check the TLS certificate served for every routed hostname."""
    from src.core.services.registry_ops import certificates_status

    result = certificates_status(resolve_settings(ctx))

    if as_json:
        click.echo(json.dumps(result, indent=2))
        return

    if not result["success"]:
        click.secho(f"❌ {result['error']}", fg="red")
        sys.exit(1)

    certificates = result["certificates"]
    if not certificates:
        click.echo("   📡 No hostnames configured")
        return

    click.secho(f"🔒 Certificates ({len(certificates)}):", fg="cyan", bold=True)
    for cert in sorted(certificates.values(), key=lambda c: c["domain"]):
        if cert.get("error"):
            click.secho(f"   ❌ {cert['domain']}: {cert['error']}", fg="red")
            continue
        days = cert["daysRemaining"]
        color = "green" if days > 14 else "yellow" if days > 0 else "red"
        icon = "✅" if cert["valid"] else "❌"
        click.secho(f"   {icon} {cert['domain']}: {days} days ({cert['issuer']})", fg=color)


@proxy.command("renew")
@click.pass_context
def renew(ctx: click.Context) -> None:
    """Push the configuration again so the proxy retries certificate issuance."""
    from src.core.services.registry_ops import renew_certificates

    result = renew_certificates(resolve_settings(ctx))
    if not result.get("success"):
        click.secho(f"❌ {result.get('error')}", fg="red")
        sys.exit(1)

    strategy = result["apply"]["tlsStrategy"].replace("_", "-")
    click.secho(f"✅ {result['message']} ({strategy})", fg="green")


# ── Domain ──────────────────────────────────────────────────────


@proxy.command("domain")
@click.argument("base_domain")
@click.pass_context
def domain(ctx: click.Context, base_domain: str) -> None:
    """Set the base domain and push the new routes."""
    from src.core.services.registry_ops import update_base_domain

    result = update_base_domain(resolve_settings(ctx), base_domain)
    _report(result, f"Base domain set to {result.get('baseDomain', base_domain)}")
