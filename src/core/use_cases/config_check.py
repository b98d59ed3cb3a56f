"""
Config check use case — validate the stored registry and report issues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from src.core.models.registry import Registry
from src.core.persistence.registry_file import RegistryError, load_registry
from src.core.services.registry_validate import registry_errors


@dataclass
class ConfigCheckResult:
    """Result of registry validation."""

    valid: bool = False
    registry: Registry | None = None
    registry_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "registry_path": str(self.registry_path) if self.registry_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "base_domain": self.registry.base_domain if self.registry else None,
            "host_count": len(self.registry.hosts) if self.registry else 0,
            "application_count": len(self.registry.applications) if self.registry else 0,
            "environment_count": len(self.registry.environments) if self.registry else 0,
        }


def check_registry(registry_path: Path) -> ConfigCheckResult:
    """Load the registry document and report errors and warnings.

    Errors are invariant violations; warnings are legal but suspicious
    states (nothing would be routed, dangling references, ...).
    """
    result = ConfigCheckResult(registry_path=registry_path)

    if not registry_path.is_file():
        result.warnings.append(
            f"No registry at {registry_path}; defaults will be used."
        )

    try:
        registry = load_registry(registry_path)
    except RegistryError as e:
        result.errors.append(str(e))
        return result
    result.registry = registry

    result.errors.extend(registry_errors(registry))

    if not registry.base_domain:
        result.warnings.append(
            "No base domain set. Applications and subdomain hosts are not routed."
        )

    if not any(e.is_default for e in registry.environments):
        result.warnings.append("No default environment.")

    env_ids = {e.id for e in registry.environments}
    for app in registry.applications:
        unknown = sorted(set(app.endpoints) - env_ids)
        if unknown:
            result.warnings.append(
                f"Application '{app.slug}' has endpoints for unknown "
                f"environment(s): {', '.join(unknown)}"
            )
        if not app.endpoints:
            result.warnings.append(f"Application '{app.slug}' has no endpoints.")

    if registry.cloudflare.enabled and not registry.cloudflare.wildcard_domains:
        result.warnings.append("Wildcard certificates enabled but no patterns derived.")

    result.valid = len(result.errors) == 0
    return result
