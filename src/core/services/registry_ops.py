"""
Registry operations — channel-independent service.

Every change to the registry goes through ``mutate``:

    load → apply change → validate → save (optimistic) → compile → TLS → push

All functions return JSON-ready dicts in the dashboard's shape,
``{"success": True, "<entity>": {...}, "applied": bool}`` or
``{"success": False, "error": "..."}``. Validation failures never
touch the stored document. A failed push does not undo a saved change:
the result is ``success`` with ``applied: False`` ("saved but not
applied") and the stored registry stays authoritative.

Covers:
- Base domain
- Standalone hosts (CRUD, toggle)
- Environments (CRUD, default flag, referential integrity)
- Applications (CRUD, toggle, per-environment endpoints)
- Wildcard TLS provider settings
- Proxy reload, status, certificate status and renewal, compiled preview
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from src.core.config.loader import Settings
from src.core.models.registry import (
    Application,
    EndpointSet,
    Environment,
    Host,
    Registry,
)
from src.core.persistence.registry_file import (
    RegistryError,
    load_registry,
    save_registry,
)
from src.core.services.cert_monitor import check_certificates
from src.core.services.domain_names import SYSTEM_DASHBOARD_ID, system_domains
from src.core.services.proxy_client import ProxyControlClient, PushResult
from src.core.services.registry_validate import (
    ReferentialIntegrityError,
    RegistryValidationError,
    normalize_base_domain,
    normalize_custom_domain,
    normalize_prefix,
    normalize_slug,
    normalize_subdomain,
    parse_api,
    parse_endpoint,
    parse_port,
    validate_registry,
)
from src.core.services.route_compiler import compile_config, compile_routes
from src.core.services.tls_policy import derive_wildcard_domains

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  Results
# ═══════════════════════════════════════════════════════════════════


@dataclass
class ApplyResult:
    """Outcome of compile → TLS → push."""

    push: PushResult
    routes: int = 0
    tls_strategy: str = ""

    @property
    def ok(self) -> bool:
        return self.push.ok

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "routes": self.routes,
            "tlsStrategy": self.tls_strategy,
            **{k: v for k, v in self.push.to_dict().items() if k != "ok"},
        }


@dataclass
class MutationResult:
    """Outcome of one registry mutation."""

    success: bool
    key: str = ""
    entity: Any = None
    error: str | None = None
    references: int | None = None
    message: str | None = None
    apply: ApplyResult | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def applied(self) -> bool:
        return self.apply is not None and self.apply.ok

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            result: dict[str, Any] = {"success": False, "error": self.error}
            if self.references is not None:
                result["references"] = self.references
            return result

        result = {"success": True}
        if self.message:
            result["message"] = self.message
        if self.key:
            result[self.key] = self.entity
        result.update(self.extra)
        result["applied"] = self.applied
        if self.apply is not None:
            if not self.apply.ok:
                result["applyError"] = self.apply.push.error
            if self.apply.push.converged is not None:
                result["converged"] = self.apply.push.converged
        return result


def _failure(error: str) -> dict[str, Any]:
    return {"success": False, "error": error}


# ═══════════════════════════════════════════════════════════════════
#  Pipeline
# ═══════════════════════════════════════════════════════════════════


def make_client(settings: Settings) -> ProxyControlClient:
    return ProxyControlClient(settings.proxy_admin_url, timeout=settings.push_timeout)


def apply_registry(
    settings: Settings,
    registry: Registry,
    client: ProxyControlClient | None = None,
) -> ApplyResult:
    """Compile the registry and push it to the proxy."""
    client = client or make_client(settings)
    config = compile_config(registry, settings)
    routes = config["apps"]["http"]["servers"][settings.server_name]["routes"]
    tls_policies = config["apps"]["tls"].get("automation", {}).get("policies", [])
    strategy = "wildcard" if config["apps"]["tls"].get("certificates") else "per_host"

    push = client.push(config)
    if push.ok and settings.confirm_push:
        push.converged = client.confirm(r["@id"] for r in routes)

    logger.info(
        "Applied registry v%d: %d routes, %d TLS policies, push %s",
        registry.version, len(routes), len(tls_policies),
        "ok" if push.ok else "failed",
    )
    return ApplyResult(push=push, routes=len(routes), tls_strategy=strategy)


def _refresh_wildcards(registry: Registry) -> None:
    if registry.cloudflare.enabled:
        registry.cloudflare.wildcard_domains = derive_wildcard_domains(registry)


def mutate(
    settings: Settings,
    fn: Callable[[Registry], Any],
    key: str = "",
    client: ProxyControlClient | None = None,
    message: str | None = None,
) -> MutationResult:
    """Read, change, validate, write, compile and push the registry.

    Args:
        settings: Runtime settings (registry path, proxy endpoint).
        fn: Applies the change in place and returns the changed entity.
            Raises RegistryValidationError to reject the change.
        key: Name of the entity in the result (``"host"``, ...).
        client: Proxy client (default: built from settings).
        message: Optional human-readable message for the result.

    Returns:
        MutationResult — never raises for validation, storage or
        control-plane failures.
    """
    path = settings.registry_path
    try:
        registry = load_registry(path)
    except RegistryError as e:
        return MutationResult(success=False, error=str(e))

    loaded_version = registry.version

    try:
        entity = fn(registry)
        _refresh_wildcards(registry)
        validate_registry(registry)
    except ReferentialIntegrityError as e:
        return MutationResult(success=False, error=str(e), references=e.references)
    except RegistryValidationError as e:
        logger.info("Registry change rejected: %s", e)
        return MutationResult(success=False, error=str(e))

    try:
        save_registry(registry, path, expected_version=loaded_version)
    except RegistryError as e:
        logger.warning("Registry change not saved: %s", e)
        return MutationResult(success=False, error=str(e))

    applied = apply_registry(settings, registry, client)
    payload = entity.to_json() if hasattr(entity, "to_json") else entity
    return MutationResult(
        success=True,
        key=key,
        entity=payload,
        message=message,
        apply=applied,
    )


def _read(settings: Settings) -> Registry:
    return load_registry(settings.registry_path)


# ═══════════════════════════════════════════════════════════════════
#  Base domain
# ═══════════════════════════════════════════════════════════════════


def get_config(settings: Settings) -> dict:
    try:
        registry = _read(settings)
    except RegistryError as e:
        return _failure(str(e))
    return {"success": True, "config": {"baseDomain": registry.base_domain}}


def update_base_domain(
    settings: Settings,
    base_domain: Any,
    client: ProxyControlClient | None = None,
) -> dict:
    try:
        domain = normalize_base_domain(base_domain)
    except RegistryValidationError as e:
        return _failure(str(e))

    def change(registry: Registry) -> str:
        registry.base_domain = domain
        return domain

    return mutate(
        settings, change, key="baseDomain", client=client,
        message="Base domain updated",
    ).to_dict()


# ═══════════════════════════════════════════════════════════════════
#  Hosts
# ═══════════════════════════════════════════════════════════════════


def get_hosts(settings: Settings) -> dict:
    try:
        registry = _read(settings)
    except RegistryError as e:
        return _failure(str(e))
    return {"success": True, "hosts": [h.to_json() for h in registry.hosts]}


def _host_domain_fields(data: dict) -> tuple[str | None, str | None]:
    subdomain = data.get("subdomain") or None
    custom = data.get("customDomain") or None
    if subdomain and custom:
        raise RegistryValidationError(
            "Specify either a subdomain or a custom domain, not both"
        )
    if not subdomain and not custom:
        raise RegistryValidationError("Subdomain or custom domain is required")
    if subdomain:
        return normalize_subdomain(subdomain), None
    return None, normalize_custom_domain(custom)


def add_host(
    settings: Settings,
    data: dict,
    client: ProxyControlClient | None = None,
) -> dict:
    """Add a standalone host.

    A subdomain host added while no base domain is set is stored but
    not routed until one is.
    """
    try:
        if not data.get("targetHost") or not data.get("targetPort"):
            raise RegistryValidationError("Target host and port are required")
        subdomain, custom = _host_domain_fields(data)
        host = Host(
            subdomain=subdomain,
            custom_domain=custom,
            target_host=str(data["targetHost"]).strip(),
            target_port=parse_port(data["targetPort"]),
            local_only=bool(data.get("localOnly")),
            require_auth=bool(data.get("requireAuth")),
        )
    except RegistryValidationError as e:
        return _failure(str(e))

    def change(registry: Registry) -> Host:
        registry.hosts.append(host)
        return host

    return mutate(settings, change, key="host", client=client).to_dict()


_HOST_UPDATABLE = ("targetHost", "targetPort", "enabled", "localOnly", "requireAuth",
                   "subdomain", "customDomain")


def update_host(
    settings: Settings,
    host_id: str,
    updates: dict,
    client: ProxyControlClient | None = None,
) -> dict:
    """Update the allowed fields of a host."""

    def change(registry: Registry) -> Host:
        host = registry.get_host(host_id)
        if host is None:
            raise RegistryValidationError("Host not found")

        for key in _HOST_UPDATABLE:
            if key not in updates:
                continue
            value = updates[key]
            if key == "targetPort":
                host.target_port = parse_port(value)
            elif key == "targetHost":
                if not value or not isinstance(value, str):
                    raise RegistryValidationError("Target host is required")
                host.target_host = value.strip()
            elif key == "subdomain" and value:
                host.subdomain, host.custom_domain = normalize_subdomain(value), None
            elif key == "customDomain" and value:
                host.custom_domain, host.subdomain = normalize_custom_domain(value), None
            elif key == "enabled":
                host.enabled = bool(value)
            elif key == "localOnly":
                host.local_only = bool(value)
            elif key == "requireAuth":
                host.require_auth = bool(value)
        return host

    return mutate(settings, change, key="host", client=client).to_dict()


def delete_host(
    settings: Settings,
    host_id: str,
    client: ProxyControlClient | None = None,
) -> dict:
    def change(registry: Registry) -> Host:
        host = registry.get_host(host_id)
        if host is None:
            raise RegistryValidationError("Host not found")
        registry.hosts.remove(host)
        return host

    return mutate(
        settings, change, key="host", client=client, message="Host deleted",
    ).to_dict()


def toggle_host(
    settings: Settings,
    host_id: str,
    enabled: Any,
    client: ProxyControlClient | None = None,
) -> dict:
    return update_host(settings, host_id, {"enabled": bool(enabled)}, client=client)


# ═══════════════════════════════════════════════════════════════════
#  Environments
# ═══════════════════════════════════════════════════════════════════


def get_environments(settings: Settings) -> dict:
    try:
        registry = _read(settings)
    except RegistryError as e:
        return _failure(str(e))
    return {
        "success": True,
        "environments": [e.to_json() for e in registry.environments],
    }


def environment_id(name: str) -> str:
    """Environment id derived from its display name."""
    return re.sub(r"[^a-z0-9]", "-", name.lower())


def add_environment(
    settings: Settings,
    data: dict,
    client: ProxyControlClient | None = None,
) -> dict:
    name = data.get("name")
    try:
        if not name or not isinstance(name, str):
            raise RegistryValidationError("Name, prefix and apiPrefix are required")
        if not isinstance(data.get("prefix"), str) or not isinstance(data.get("apiPrefix"), str):
            raise RegistryValidationError("Name, prefix and apiPrefix are required")
        env = Environment(
            id=environment_id(name),
            name=name.strip(),
            prefix=normalize_prefix(data["prefix"], "prefix"),
            api_prefix=normalize_prefix(data["apiPrefix"], "apiPrefix", allow_empty=False),
        )
    except RegistryValidationError as e:
        return _failure(str(e))

    def change(registry: Registry) -> Environment:
        if registry.get_environment(env.id) is not None:
            raise RegistryValidationError("Environment with this name already exists")
        registry.environments.append(env)
        return env

    return mutate(settings, change, key="environment", client=client).to_dict()


def update_environment(
    settings: Settings,
    env_id: str,
    updates: dict,
    client: ProxyControlClient | None = None,
) -> dict:
    def change(registry: Registry) -> Environment:
        env = registry.get_environment(env_id)
        if env is None:
            raise RegistryValidationError("Environment not found")

        if "name" in updates:
            if not updates["name"] or not isinstance(updates["name"], str):
                raise RegistryValidationError("Name is required")
            env.name = updates["name"].strip()
        if "prefix" in updates:
            env.prefix = normalize_prefix(updates["prefix"], "prefix")
        if "apiPrefix" in updates:
            env.api_prefix = normalize_prefix(
                updates["apiPrefix"], "apiPrefix", allow_empty=False,
            )
        if "isDefault" in updates:
            if updates["isDefault"]:
                for other in registry.environments:
                    other.is_default = False
            env.is_default = bool(updates["isDefault"])
        return env

    return mutate(settings, change, key="environment", client=client).to_dict()


def delete_environment(
    settings: Settings,
    env_id: str,
    client: ProxyControlClient | None = None,
) -> dict:
    def change(registry: Registry) -> Environment:
        env = registry.get_environment(env_id)
        if env is None:
            raise RegistryValidationError("Environment not found")
        users = registry.applications_using(env_id)
        if users:
            raise ReferentialIntegrityError(
                f"Cannot delete: {len(users)} application(s) use this environment",
                references=len(users),
            )
        registry.environments.remove(env)
        return env

    return mutate(
        settings, change, key="environment", client=client,
        message="Environment deleted",
    ).to_dict()


# ═══════════════════════════════════════════════════════════════════
#  Applications
# ═══════════════════════════════════════════════════════════════════


def get_applications(settings: Settings) -> dict:
    try:
        registry = _read(settings)
    except RegistryError as e:
        return _failure(str(e))
    return {
        "success": True,
        "applications": [a.to_json() for a in registry.applications],
    }


def parse_endpoint_set(
    raw: Any,
    env_id: str,
    existing: EndpointSet | None = None,
) -> EndpointSet:
    """Parse one environment's endpoints from a request payload.

    Omitted fields keep their ``existing`` values. ``frontend: null``
    removes the frontend. A single legacy ``api`` object is accepted in
    place of ``apis``.
    """
    if not isinstance(raw, dict):
        raise RegistryValidationError(f"Invalid endpoints for environment {env_id}")

    what = f"environment {env_id}"
    if "frontend" in raw:
        frontend = parse_endpoint(raw["frontend"], what) if raw["frontend"] else None
    else:
        frontend = existing.frontend if existing else None

    if "apis" in raw:
        apis_raw = raw["apis"] if isinstance(raw["apis"], list) else []
        apis = [parse_api(a, what) for a in apis_raw]
    elif "api" in raw:
        legacy = raw["api"]
        if isinstance(legacy, dict):
            legacy = {**legacy, "slug": ""}
        apis = [parse_api(legacy, what)] if legacy else []
    else:
        apis = list(existing.apis) if existing else []

    slugs = [a.slug for a in apis]
    if len(set(slugs)) != len(slugs):
        raise RegistryValidationError(f"Duplicate API slug in {what}")

    return EndpointSet(frontend=frontend, apis=apis)


def _require_endpoint(endpoint_set: EndpointSet, env_id: str) -> None:
    if endpoint_set.frontend is None and not endpoint_set.apis:
        raise RegistryValidationError(
            f"At least one endpoint is required for environment {env_id}"
        )


def add_application(
    settings: Settings,
    data: dict,
    client: ProxyControlClient | None = None,
) -> dict:
    name = data.get("name")
    slug = data.get("slug")
    endpoints = data.get("endpoints")
    try:
        if not name or not slug:
            raise RegistryValidationError("Name and slug are required")
        slug = normalize_slug(slug)
        if not isinstance(endpoints, dict) or not endpoints:
            raise RegistryValidationError("At least one environment endpoint is required")
    except RegistryValidationError as e:
        return _failure(str(e))

    def change(registry: Registry) -> Application:
        if any(a.slug == slug for a in registry.applications):
            raise RegistryValidationError("Application with this slug already exists")

        parsed: dict[str, EndpointSet] = {}
        for env_id, raw in endpoints.items():
            if registry.get_environment(env_id) is None:
                logger.debug("Ignoring endpoints for unknown environment %s", env_id)
                continue
            endpoint_set = parse_endpoint_set(raw, env_id)
            _require_endpoint(endpoint_set, env_id)
            parsed[env_id] = endpoint_set

        if not parsed:
            raise RegistryValidationError("No valid environment endpoints provided")

        app = Application(name=str(name).strip(), slug=slug, endpoints=parsed)
        registry.applications.append(app)
        return app

    return mutate(settings, change, key="application", client=client).to_dict()


def update_application(
    settings: Settings,
    app_id: str,
    updates: dict,
    client: ProxyControlClient | None = None,
) -> dict:
    def change(registry: Registry) -> Application:
        app = registry.get_application(app_id)
        if app is None:
            raise RegistryValidationError("Application not found")

        if updates.get("name"):
            app.name = str(updates["name"]).strip()

        if updates.get("slug"):
            new_slug = normalize_slug(updates["slug"])
            if any(a.id != app_id and a.slug == new_slug for a in registry.applications):
                raise RegistryValidationError("Application with this slug already exists")
            app.slug = new_slug

        if isinstance(updates.get("enabled"), bool):
            app.enabled = updates["enabled"]

        endpoints = updates.get("endpoints")
        if isinstance(endpoints, dict):
            for env_id, raw in endpoints.items():
                if registry.get_environment(env_id) is None:
                    continue
                if raw is None:
                    app.endpoints.pop(env_id, None)
                    continue
                endpoint_set = parse_endpoint_set(raw, env_id, app.endpoints.get(env_id))
                _require_endpoint(endpoint_set, env_id)
                app.endpoints[env_id] = endpoint_set
        return app

    return mutate(settings, change, key="application", client=client).to_dict()


def delete_application(
    settings: Settings,
    app_id: str,
    client: ProxyControlClient | None = None,
) -> dict:
    def change(registry: Registry) -> Application:
        app = registry.get_application(app_id)
        if app is None:
            raise RegistryValidationError("Application not found")
        registry.applications.remove(app)
        return app

    return mutate(
        settings, change, key="application", client=client,
        message="Application deleted",
    ).to_dict()


def toggle_application(
    settings: Settings,
    app_id: str,
    enabled: Any,
    client: ProxyControlClient | None = None,
) -> dict:
    return update_application(settings, app_id, {"enabled": bool(enabled)}, client=client)


# ═══════════════════════════════════════════════════════════════════
#  Wildcard TLS provider
# ═══════════════════════════════════════════════════════════════════


def _cloudflare_payload(registry: Registry, settings: Settings) -> dict:
    return {
        **registry.cloudflare.to_json(),
        "tokenConfigured": settings.has_cloudflare_credential,
        "tokenEnv": settings.cloudflare_token_env,
    }


def get_cloudflare(settings: Settings) -> dict:
    try:
        registry = _read(settings)
    except RegistryError as e:
        return _failure(str(e))
    return {"success": True, "cloudflare": _cloudflare_payload(registry, settings)}


def update_cloudflare(
    settings: Settings,
    data: dict,
    client: ProxyControlClient | None = None,
) -> dict:
    """Enable or disable wildcard certificates through Cloudflare DNS-01."""
    if "enabled" not in data or not isinstance(data["enabled"], bool):
        return _failure("'enabled' must be true or false")
    enabled = data["enabled"]
    if enabled and not settings.has_cloudflare_credential:
        return _failure(
            f"Cloudflare API token is not configured (set {settings.cloudflare_token_env})"
        )

    def change(registry: Registry) -> dict:
        if enabled and not registry.base_domain:
            raise RegistryValidationError(
                "Set a base domain before enabling wildcard certificates"
            )
        registry.cloudflare.enabled = enabled
        registry.cloudflare.wildcard_domains = (
            derive_wildcard_domains(registry) if enabled else []
        )
        return _cloudflare_payload(registry, settings)

    return mutate(settings, change, key="cloudflare", client=client).to_dict()


# ═══════════════════════════════════════════════════════════════════
#  Proxy & certificates
# ═══════════════════════════════════════════════════════════════════


def reload_proxy(settings: Settings, client: ProxyControlClient | None = None) -> dict:
    """Recompile the stored registry and push it again."""
    try:
        registry = _read(settings)
    except RegistryError as e:
        return _failure(str(e))
    applied = apply_registry(settings, registry, client)
    if not applied.ok:
        return _failure(applied.push.error or "Push failed")
    return {
        "success": True,
        "message": "Proxy configuration reloaded",
        "apply": applied.to_dict(),
    }


def renew_certificates(settings: Settings, client: ProxyControlClient | None = None) -> dict:
    """Push the stored configuration again so the proxy re-runs issuance.

    The proxy manages certificates itself; reloading the TLS automation
    block makes it retry any subject without a valid certificate.
    """
    result = reload_proxy(settings, client)
    if not result["success"]:
        return result
    logger.info("Certificate renewal triggered (%s)", result["apply"]["tlsStrategy"])
    return {
        "success": True,
        "message": "Certificate renewal triggered",
        "apply": result["apply"],
    }


def proxy_status(settings: Settings, client: ProxyControlClient | None = None) -> dict:
    client = client or make_client(settings)
    return {"success": True, "proxy": client.status()}


def compiled_preview(settings: Settings) -> dict:
    """The configuration that would be pushed, and a route summary."""
    try:
        registry = _read(settings)
    except RegistryError as e:
        return _failure(str(e))
    return {
        "success": True,
        "routes": [r.to_dict() for r in compile_routes(registry, settings)],
        "config": compile_config(registry, settings),
    }


def system_route_status(settings: Settings) -> dict:
    try:
        registry = _read(settings)
    except RegistryError as e:
        return _failure(str(e))
    domain = system_domains(registry.base_domain).get(SYSTEM_DASHBOARD_ID)
    return {
        "success": True,
        "configured": domain is not None,
        "domain": domain,
        "upstream": settings.dashboard_upstream,
    }


def certificates_status(settings: Settings) -> dict:
    try:
        registry = _read(settings)
    except RegistryError as e:
        return _failure(str(e))
    statuses = check_certificates(registry, settings)
    return {
        "success": True,
        "certificates": {rule_id: s.to_dict() for rule_id, s in statuses.items()},
    }


__all__ = [
    "ApplyResult",
    "MutationResult",
    "add_application",
    "add_environment",
    "add_host",
    "apply_registry",
    "certificates_status",
    "compiled_preview",
    "delete_application",
    "delete_environment",
    "delete_host",
    "get_applications",
    "get_cloudflare",
    "get_config",
    "get_environments",
    "get_hosts",
    "mutate",
    "proxy_status",
    "reload_proxy",
    "renew_certificates",
    "system_route_status",
    "toggle_application",
    "toggle_host",
    "update_application",
    "update_base_domain",
    "update_cloudflare",
    "update_environment",
    "update_host",
]
