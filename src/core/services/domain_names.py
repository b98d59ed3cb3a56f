"""
Domain name derivation — externally visible hostnames for every route.

Pure functions, no I/O. Hosts and application endpoints share one
namespace, so this module is also the single place where uniqueness
and collisions are computed.

Naming rules:
    host                 customDomain, else <subdomain>.<base>
    frontend             <slug>.<prefix>.<base>  (or <slug>.<base> if no prefix)
    api                  <slug>.<apiPrefix>.<base>
    api with slug        <slug>-<apiSlug>.<apiPrefix>.<base>

Rule ids (shared with the compiled config and the certificate monitor):
    host                 <hostId>
    frontend             <appId>-frontend-<envId>
    api                  <appId>-api-<envId>
    api with slug        <appId>-api-<apiSlug>-<envId>
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from src.core.models.endpoint import Api, EndpointKind, Frontend
from src.core.models.registry import (
    Application,
    Endpoint,
    Environment,
    Host,
    Registry,
)

# Labels owned by the system routes
RESERVED_LABELS = ("proxy", "auth")

SYSTEM_DASHBOARD_ID = "system-dashboard"
SYSTEM_AUTH_ID = "system-auth"


def host_domain(host: Host, base_domain: str) -> str:
    """External hostname of a standalone host."""
    if host.custom_domain:
        return host.custom_domain.lower()
    return f"{host.subdomain}.{base_domain}".lower()


def app_domain(
    app: Application,
    kind: EndpointKind,
    environment: Environment,
    base_domain: str,
) -> str:
    """External hostname of one application endpoint."""
    if isinstance(kind, Api):
        label = f"{app.slug}-{kind.slug}" if kind.slug else app.slug
        return f"{label}.{environment.api_prefix}.{base_domain}".lower()
    if environment.prefix:
        return f"{app.slug}.{environment.prefix}.{base_domain}".lower()
    return f"{app.slug}.{base_domain}".lower()


def domain_for(
    entity: Host | Application,
    kind: EndpointKind | None = None,
    environment: Environment | None = None,
    base_domain: str = "",
) -> str:
    """Derive the hostname of a host, or of an application endpoint.

    Args:
        entity: A Host, or an Application together with kind and environment.
        kind: Frontend() or Api(slug) — applications only.
        environment: The environment contributing prefix labels.
        base_domain: The registry's base domain.
    """
    if isinstance(entity, Host):
        return host_domain(entity, base_domain)
    if kind is None or environment is None:
        raise ValueError("application domains need an endpoint kind and an environment")
    return app_domain(entity, kind, environment, base_domain)


def rule_id_for(
    entity: Host | Application,
    kind: EndpointKind | None = None,
    environment: Environment | None = None,
) -> str:
    """Stable rule id of a host, or of an application endpoint."""
    if isinstance(entity, Host):
        return entity.id
    if kind is None or environment is None:
        raise ValueError("application rule ids need an endpoint kind and an environment")
    if isinstance(kind, Frontend):
        return f"{entity.id}-frontend-{environment.id}"
    if kind.slug:
        return f"{entity.id}-api-{kind.slug}-{environment.id}"
    return f"{entity.id}-api-{environment.id}"


def system_domains(base_domain: str) -> dict[str, str]:
    """Rule id → hostname of the reserved system routes."""
    if not base_domain:
        return {}
    return {
        SYSTEM_DASHBOARD_ID: f"proxy.{base_domain}",
        SYSTEM_AUTH_ID: f"auth.{base_domain}",
    }


@dataclass(frozen=True)
class Target:
    """One routable hostname derived from the registry."""

    rule_id: str
    domain: str
    endpoint: Endpoint | Host
    owner_id: str
    environment: Environment | None = None
    kind: EndpointKind | None = None
    enabled: bool = True

    @property
    def upstream(self) -> str:
        return f"{self.endpoint.target_host}:{self.endpoint.target_port}"


def iter_application_endpoints(
    registry: Registry,
    app: Application,
) -> Iterator[tuple[Environment, EndpointKind, Endpoint]]:
    """Yield (environment, kind, endpoint) for every endpoint of an app.

    Environments are visited in registry order; endpoints declared for an
    environment that no longer exists are skipped.
    """
    for env in registry.environments:
        endpoint_set = app.endpoints.get(env.id)
        if endpoint_set is None:
            continue
        if endpoint_set.frontend is not None:
            yield env, Frontend(), endpoint_set.frontend
        for api in endpoint_set.apis:
            yield env, Api(api.slug), api


def iter_targets(registry: Registry, include_disabled: bool = False) -> Iterator[Target]:
    """Yield every application endpoint, then every host.

    Entities whose name depends on the base domain are skipped while no
    base domain is configured.
    """
    base = registry.base_domain

    for app in registry.applications:
        if not app.enabled and not include_disabled:
            continue
        if not base:
            continue
        for env, kind, endpoint in iter_application_endpoints(registry, app):
            yield Target(
                rule_id=rule_id_for(app, kind, env),
                domain=app_domain(app, kind, env, base),
                endpoint=endpoint,
                owner_id=app.id,
                environment=env,
                kind=kind,
                enabled=app.enabled,
            )

    for host in registry.hosts:
        if not host.enabled and not include_disabled:
            continue
        if not host.custom_domain and not base:
            continue
        yield Target(
            rule_id=host.id,
            domain=host_domain(host, base),
            endpoint=host,
            owner_id=host.id,
            enabled=host.enabled,
        )


def find_collisions(registry: Registry) -> dict[str, list[str]]:
    """Map every hostname claimed more than once to the rule ids claiming it.

    Disabled entities are included: re-enabling one must never produce a
    duplicate. The reserved system hostnames count as already claimed.
    """
    claims: dict[str, list[str]] = {}
    for rule_id, domain in system_domains(registry.base_domain).items():
        claims.setdefault(domain.lower(), []).append(rule_id)
    for target in iter_targets(registry, include_disabled=True):
        claims.setdefault(target.domain.lower(), []).append(target.rule_id)
    return {domain: ids for domain, ids in claims.items() if len(ids) > 1}
