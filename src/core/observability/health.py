"""
Health checker — aggregate health of the routing control plane.

Components:
    registry        the stored document loads, migrates and validates
    proxy           the proxy's admin endpoint answers and has a config

Used by the CLI ``health`` command and ``GET /api/health``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from src.core.config.loader import Settings
from src.core.persistence.registry_file import RegistryError, load_registry
from src.core.services.proxy_client import ProxyControlClient
from src.core.services.registry_validate import registry_errors

logger = logging.getLogger(__name__)


@dataclass
class ComponentHealth:
    """Health of a single component."""

    name: str
    status: str = "unknown"  # healthy, degraded, unhealthy, unknown
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class SystemHealth:
    """Aggregate health of the entire system."""

    status: str = "healthy"
    timestamp: str = ""
    components: list[ComponentHealth] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = datetime.now(UTC).isoformat()

    def add(self, component: ComponentHealth) -> None:
        self.components.append(component)
        self._recalculate()

    def _recalculate(self) -> None:
        statuses = [c.status for c in self.components]
        if any(s == "unhealthy" for s in statuses):
            self.status = "unhealthy"
        elif any(s == "degraded" for s in statuses):
            self.status = "degraded"
        elif all(s == "healthy" for s in statuses):
            self.status = "healthy"
        else:
            self.status = "unknown"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "components": [c.to_dict() for c in self.components],
        }


def check_registry(path: Path) -> ComponentHealth:
    """The registry document can be loaded and satisfies its invariants."""
    try:
        registry = load_registry(path)
    except RegistryError as e:
        return ComponentHealth(name="registry", status="unhealthy", message=str(e))

    details = {
        "path": str(path),
        "exists": path.is_file(),
        "version": registry.version,
        "schemaVersion": registry.schema_version,
        "hosts": len(registry.hosts),
        "applications": len(registry.applications),
        "environments": len(registry.environments),
    }

    errors = registry_errors(registry)
    if errors:
        return ComponentHealth(
            name="registry",
            status="degraded",
            message=f"{len(errors)} invariant violation(s): {errors[0]}",
            details=details,
        )
    if not registry.base_domain:
        return ComponentHealth(
            name="registry",
            status="degraded",
            message="No base domain configured",
            details=details,
        )
    return ComponentHealth(
        name="registry",
        status="healthy",
        message=f"{len(registry.hosts)} hosts, {len(registry.applications)} applications",
        details=details,
    )


def check_control_plane(client: ProxyControlClient) -> ComponentHealth:
    """The proxy's admin endpoint is reachable and has a configuration."""
    status = client.status()
    if not status["reachable"]:
        return ComponentHealth(
            name="proxy",
            status="unhealthy",
            message=f"Unreachable: {status.get('error', '')}",
            details=status,
        )
    if not status["loaded"]:
        return ComponentHealth(
            name="proxy",
            status="degraded",
            message="Reachable, no configuration loaded",
            details=status,
        )
    return ComponentHealth(
        name="proxy",
        status="healthy",
        message=f"{status['routes']} routes active",
        details=status,
    )


def check_system_health(
    settings: Settings,
    client: ProxyControlClient | None = None,
) -> SystemHealth:
    """Run all health checks and return aggregate status."""
    health = SystemHealth()
    health.add(check_registry(settings.registry_path))

    client = client or ProxyControlClient(
        settings.proxy_admin_url, timeout=settings.push_timeout,
    )
    health.add(check_control_plane(client))

    logger.debug("Health: %s", health.status)
    return health
