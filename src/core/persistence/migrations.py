"""
Registry schema migrations — versioned upgrade chain.

Every persisted registry carries a ``schemaVersion`` tag. Documents
written before the tag existed are version 1. Each migration takes a
raw document at version N and returns it at version N+1; ``migrate``
applies them in order until the document reaches the current version,
so the rest of the code only ever sees the current shape.

    1 → 2   flat ``frontend`` / ``api`` application fields
            → per-environment ``endpoints`` map
    2 → 3   single ``api`` object inside an environment
            → ``apis`` list
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from src.core.models.registry import CURRENT_SCHEMA_VERSION

logger = logging.getLogger(__name__)

# Top-level keys from older releases that are dropped on every load
DEPRECATED_KEYS = ("wildcardCert", "caddyAdminUrl")

# Defaults the original flat shape relied on
_LEGACY_FRONTEND_PORT = 3000
_LEGACY_API_PORT = 3001


class MigrationError(Exception):
    """Raised when a document cannot be brought to the current schema."""


def _legacy_endpoint(raw: dict, default_port: int) -> dict:
    return {
        "targetHost": raw.get("targetHost") or "localhost",
        "targetPort": raw.get("targetPort") or default_port,
        "localOnly": bool(raw.get("localOnly")),
        "requireAuth": bool(raw.get("requireAuth")),
    }


def _migrate_1_to_2(doc: dict[str, Any]) -> dict[str, Any]:
    """Flat application fields → ``endpoints`` keyed by environment id."""
    applications = []
    for app in doc.get("applications") or []:
        if isinstance(app.get("endpoints"), dict):
            applications.append(app)
            continue

        frontend = app.get("frontend")
        api = app.get("api")
        endpoints = {}
        for env_id in app.get("environments") or ["prod"]:
            endpoints[env_id] = {
                "frontend": _legacy_endpoint(frontend, _LEGACY_FRONTEND_PORT) if frontend else None,
                "api": _legacy_endpoint(api, _LEGACY_API_PORT) if api else None,
            }

        migrated = {
            k: v for k, v in app.items()
            if k not in ("frontend", "api", "environments")
        }
        migrated["endpoints"] = endpoints
        migrated["enabled"] = app.get("enabled") is not False
        applications.append(migrated)

    doc["applications"] = applications
    return doc


def _migrate_2_to_3(doc: dict[str, Any]) -> dict[str, Any]:
    """Single ``api`` per environment → ``apis`` list of one element."""
    for app in doc.get("applications") or []:
        for env_endpoints in (app.get("endpoints") or {}).values():
            if not isinstance(env_endpoints, dict):
                continue
            api = env_endpoints.pop("api", None)
            if "apis" in env_endpoints:
                continue
            if api:
                env_endpoints["apis"] = [{"slug": "", **_legacy_endpoint(api, _LEGACY_API_PORT)}]
            else:
                env_endpoints["apis"] = []
    return doc


# version N → migration producing version N+1
MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: _migrate_1_to_2,
    2: _migrate_2_to_3,
}


def strip_deprecated(doc: dict[str, Any]) -> dict[str, Any]:
    """Drop top-level keys no longer part of the document."""
    for key in DEPRECATED_KEYS:
        if key in doc:
            logger.debug("Dropping deprecated registry key %r", key)
            doc.pop(key)
    return doc


def migrate(doc: dict[str, Any]) -> dict[str, Any]:
    """Apply the migration chain until the document is current.

    Args:
        doc: Raw registry document (mutated in place).

    Returns:
        The document at ``CURRENT_SCHEMA_VERSION``.

    Raises:
        MigrationError: If the document is newer than this release, or a
            step is missing from the chain.
    """
    version = doc.get("schemaVersion", 1)
    if not isinstance(version, int) or version < 1:
        raise MigrationError(f"Invalid schemaVersion: {version!r}")
    if version > CURRENT_SCHEMA_VERSION:
        raise MigrationError(
            f"Registry schema {version} is newer than supported "
            f"({CURRENT_SCHEMA_VERSION})"
        )

    while version < CURRENT_SCHEMA_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            raise MigrationError(f"No migration from schema {version}")
        doc = step(doc)
        version += 1
        doc["schemaVersion"] = version
        logger.info("Migrated registry document to schema %d", version)

    return doc
