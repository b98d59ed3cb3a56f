"""
Registry validation — input parsing and whole-document invariants.

Parsing helpers turn untrusted request payloads into registry models
and raise ``RegistryValidationError`` with a message fit for the
dashboard. ``validate_registry`` checks the invariants that span
several entities (unique hostnames, a single default environment, ...)
and runs after every mutation, before anything is written.
"""

from __future__ import annotations

import re
from typing import Any

from src.core.models.registry import Endpoint, Registry, SlottedEndpoint
from src.core.services.domain_names import RESERVED_LABELS, find_collisions

_LABEL = r"[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?"

DOMAIN_RE = re.compile(rf"^({_LABEL}\.)+[a-z]{{2,}}$")
SUBDOMAIN_RE = re.compile(rf"^{_LABEL}$")
PREFIX_RE = re.compile(rf"^{_LABEL}(\.{_LABEL})*$")
SLUG_RE = re.compile(rf"^{_LABEL}$")


class RegistryValidationError(Exception):
    """Raised when a change would produce an invalid registry."""


class ReferentialIntegrityError(RegistryValidationError):
    """Raised when an entity is still referenced by others."""

    def __init__(self, message: str, references: int) -> None:
        super().__init__(message)
        self.references = references


# ═══════════════════════════════════════════════════════════════════
#  Field parsing
# ═══════════════════════════════════════════════════════════════════


def normalize_base_domain(value: Any) -> str:
    """Lower-case and validate a base domain."""
    if not value or not isinstance(value, str):
        raise RegistryValidationError("Invalid base domain")
    domain = value.strip().lower()
    if not DOMAIN_RE.match(domain):
        raise RegistryValidationError("Invalid domain format")
    return domain


def normalize_subdomain(value: Any) -> str:
    if not isinstance(value, str) or not SUBDOMAIN_RE.match(value.lower()):
        raise RegistryValidationError("Invalid subdomain format")
    subdomain = value.lower()
    if subdomain in RESERVED_LABELS:
        raise RegistryValidationError(f"Subdomain '{subdomain}' is reserved")
    return subdomain


def normalize_custom_domain(value: Any) -> str:
    if not isinstance(value, str) or not DOMAIN_RE.match(value.lower()):
        raise RegistryValidationError("Invalid custom domain format")
    return value.lower()


def normalize_slug(value: Any) -> str:
    if not isinstance(value, str) or not SLUG_RE.match(value.lower()):
        raise RegistryValidationError("Invalid slug format")
    slug = value.lower()
    if slug in RESERVED_LABELS:
        raise RegistryValidationError(f"Slug '{slug}' is reserved")
    return slug


def normalize_api_slug(value: Any) -> str:
    """API disambiguator: lower-cased, anything but [a-z0-9-] dropped."""
    return re.sub(r"[^a-z0-9-]", "", str(value or "").lower())


def normalize_prefix(value: Any, field_name: str, allow_empty: bool = True) -> str:
    if not isinstance(value, str):
        raise RegistryValidationError(f"{field_name} must be a string")
    prefix = value.strip().lower()
    if not prefix:
        if allow_empty:
            return ""
        raise RegistryValidationError(f"{field_name} is required")
    if not PREFIX_RE.match(prefix):
        raise RegistryValidationError(f"Invalid {field_name} format")
    return prefix


def parse_port(value: Any, what: str = "port") -> int:
    """Parse a TCP port in [1, 65535]."""
    if isinstance(value, bool):
        raise RegistryValidationError(f"Invalid {what} number")
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise RegistryValidationError(f"Invalid {what} number") from None
    if port < 1 or port > 65535:
        raise RegistryValidationError(f"Invalid {what} number")
    return port


def _target_host(raw: dict, what: str) -> str:
    target = raw.get("targetHost")
    if not target or not isinstance(target, str):
        raise RegistryValidationError(f"Target host is required for {what}")
    return target.strip()


def parse_endpoint(raw: Any, what: str) -> Endpoint:
    """Parse a frontend endpoint payload."""
    if not isinstance(raw, dict):
        raise RegistryValidationError(f"Invalid endpoint for {what}")
    return Endpoint(
        target_host=_target_host(raw, what),
        target_port=parse_port(raw.get("targetPort"), f"{what} port"),
        local_only=bool(raw.get("localOnly")),
        require_auth=bool(raw.get("requireAuth")),
    )


def parse_api(raw: Any, what: str) -> SlottedEndpoint:
    """Parse one entry of an ``apis`` payload."""
    if not isinstance(raw, dict):
        raise RegistryValidationError(f"Invalid API endpoint for {what}")
    return SlottedEndpoint(
        slug=normalize_api_slug(raw.get("slug")),
        target_host=_target_host(raw, what),
        target_port=parse_port(raw.get("targetPort"), f"{what} API port"),
        local_only=bool(raw.get("localOnly")),
        require_auth=bool(raw.get("requireAuth")),
    )


# ═══════════════════════════════════════════════════════════════════
#  Whole-registry invariants
# ═══════════════════════════════════════════════════════════════════


def registry_errors(registry: Registry) -> list[str]:
    """Every invariant violation in a registry (empty when valid)."""
    errors: list[str] = []

    env_ids = [e.id for e in registry.environments]
    dupes = sorted({i for i in env_ids if env_ids.count(i) > 1})
    if dupes:
        errors.append(f"Duplicate environment ids: {', '.join(dupes)}")

    defaults = [e.id for e in registry.environments if e.is_default]
    if len(defaults) > 1:
        errors.append(f"Multiple default environments: {', '.join(defaults)}")

    slugs = [a.slug for a in registry.applications]
    slug_dupes = sorted({s for s in slugs if slugs.count(s) > 1})
    if slug_dupes:
        errors.append(f"Duplicate application slugs: {', '.join(slug_dupes)}")

    for host in registry.hosts:
        if bool(host.subdomain) == bool(host.custom_domain):
            errors.append(
                f"Host {host.id} must have exactly one of subdomain or custom domain"
            )

    for domain, rule_ids in sorted(find_collisions(registry).items()):
        errors.append(f"Domain {domain} is already in use ({len(rule_ids)} routes)")

    return errors


def validate_registry(registry: Registry) -> None:
    """Raise on the first invariant violation."""
    errors = registry_errors(registry)
    if errors:
        raise RegistryValidationError(errors[0])
