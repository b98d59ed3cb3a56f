"""
Helpers shared by the CLI command modules.
"""

from __future__ import annotations

import sys

import click

from src.core.config.loader import ConfigError, Settings, load_settings


def resolve_settings(ctx: click.Context) -> Settings:
    """Settings for this invocation (loaded once, errors end the command)."""
    obj = ctx.find_root().obj
    if obj.get("settings") is None:
        try:
            obj["settings"] = load_settings(obj.get("config_path"))
        except ConfigError as e:
            click.secho(f"❌ {e}", fg="red")
            sys.exit(1)
    return obj["settings"]
