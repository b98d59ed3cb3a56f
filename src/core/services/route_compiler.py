"""
Route compiler — registry → edge proxy routing configuration.

Produces the proxy's JSON configuration: an ordered list of host-matched
routes, each ``terminal`` so the first host match wins, followed by the
TLS automation block from the TLS policy builder.

Route order:
    1. system routes      proxy.<base> (dashboard), auth.<base> (portal)
    2. applications       per environment: frontend, then each API
    3. standalone hosts

Handler chain of every route:
    headers (CSP)  →  [ip-restriction subroute]  →  [auth subroute]  →  reverse_proxy

The auth subroute sends the request to the forward-auth endpoint first;
a 2xx lets it through to the upstream, a 401/403 becomes a redirect to
the login portal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

from src.core.config.loader import Settings
from src.core.models.registry import Registry
from src.core.services.domain_names import (
    SYSTEM_AUTH_ID,
    SYSTEM_DASHBOARD_ID,
    Target,
    iter_targets,
    system_domains,
)
from src.core.services.tls_policy import build_tls_policy

logger = logging.getLogger(__name__)

# Caller ranges allowed on localOnly routes
PRIVATE_RANGES = ["10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "127.0.0.0/8"]

# Identity headers copied from a successful forward-auth response
_IDENTITY_HEADERS = ("Remote-User", "Remote-Email", "Remote-Name", "Remote-Groups")

# Login URL set by the auth service on 401/403 responses
AUTH_REDIRECT_HEADER = "X-Auth-Redirect"


@dataclass
class CompiledRoute:
    """One compiled routing rule and the facts it was compiled from."""

    rule_id: str
    domain: str
    upstream: str
    require_auth: bool = False
    local_only: bool = False
    system: bool = False
    rule: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.rule_id,
            "domain": self.domain,
            "upstream": self.upstream,
            "requireAuth": self.require_auth,
            "localOnly": self.local_only,
            "system": self.system,
        }


# ═══════════════════════════════════════════════════════════════════
#  Handlers
# ═══════════════════════════════════════════════════════════════════


def security_headers(base_domain: str) -> dict[str, Any]:
    """Response headers handler; framing restricted to the base domain."""
    csp = "frame-ancestors 'self'"
    if base_domain:
        csp += f" https://{base_domain} https://*.{base_domain}"
    return {
        "handler": "headers",
        "response": {
            "set": {
                "Content-Security-Policy": [csp],
                "X-Content-Type-Options": ["nosniff"],
            },
        },
    }


def reverse_proxy(upstream: str) -> dict[str, Any]:
    return {
        "handler": "reverse_proxy",
        "upstreams": [{"dial": upstream}],
    }


def login_redirect_url(base_domain: str, original_url: str) -> str:
    """Login portal URL with ``original_url`` percent-encoded as ``rd``.

    Braces are left unescaped so proxy placeholders in ``original_url``
    survive and are filled in at request time.
    """
    return f"https://auth.{base_domain}/login?rd={quote(original_url, safe='{}')}"


def forward_auth(settings: Settings, base_domain: str) -> dict[str, Any]:
    """Forward-auth handler: ask the auth service, then continue or redirect.

    The original method is kept, only the URI is rewritten. On 401/403
    the auth service's ``X-Auth-Redirect`` header (login URL with the
    full original URL encoded) becomes the redirect target. Without that
    header the return URL carries the request path only.
    """
    denied = {"status_code": [401, 403]}
    return {
        "handler": "reverse_proxy",
        "upstreams": [{"dial": settings.auth_upstream}],
        "rewrite": {"uri": settings.forward_auth_path},
        "headers": {
            "request": {
                "set": {
                    "X-Forwarded-Method": ["{http.request.method}"],
                    "X-Forwarded-Proto": ["{http.request.scheme}"],
                    "X-Forwarded-Host": ["{http.request.host}"],
                    "X-Forwarded-Uri": ["{http.request.uri}"],
                },
            },
        },
        "handle_response": [
            {
                "match": {"status_code": [2]},
                "routes": [{
                    "handle": [{
                        "handler": "headers",
                        "request": {
                            "set": {
                                name: [f"{{http.reverse_proxy.header.{name}}}"]
                                for name in _IDENTITY_HEADERS
                            },
                        },
                    }],
                }],
            },
            {
                "match": {**denied, "headers": {AUTH_REDIRECT_HEADER: ["*"]}},
                "routes": [{"handle": [_redirect(
                    f"{{http.reverse_proxy.header.{AUTH_REDIRECT_HEADER}}}"
                )]}],
            },
            {
                "match": denied,
                "routes": [{"handle": [_redirect(login_redirect_url(
                    base_domain, "https://{http.request.host}{http.request.uri.path}",
                ))]}],
            },
        ],
    }


def _redirect(location: str) -> dict[str, Any]:
    return {
        "handler": "static_response",
        "status_code": 302,
        "headers": {"Location": [location]},
    }


def is_dev_environment(env_id: str | None) -> bool:
    """Development environments let websocket upgrades skip auth (live reload)."""
    return bool(env_id) and "dev" in env_id.lower()


def auth_subroute(
    upstream: str,
    settings: Settings,
    base_domain: str,
    env_id: str | None,
) -> dict[str, Any]:
    """Subroute guarding ``upstream`` with forward authentication."""
    routes: list[dict[str, Any]] = []
    if is_dev_environment(env_id):
        routes.append({
            "match": [{"header": {"Upgrade": ["websocket"]}}],
            "handle": [reverse_proxy(upstream)],
            "terminal": True,
        })
    routes.append({
        "handle": [forward_auth(settings, base_domain), reverse_proxy(upstream)],
    })
    return {"handler": "subroute", "routes": routes}


def local_only_subroute(inner: list[dict[str, Any]]) -> dict[str, Any]:
    """Subroute admitting private-network callers only; others get 403."""
    return {
        "handler": "subroute",
        "routes": [
            {
                "match": [{"remote_ip": {"ranges": list(PRIVATE_RANGES)}}],
                "handle": inner,
                "terminal": True,
            },
            {
                "handle": [{"handler": "static_response", "status_code": 403}],
                "terminal": True,
            },
        ],
    }


# ═══════════════════════════════════════════════════════════════════
#  Rules
# ═══════════════════════════════════════════════════════════════════


def build_rule(
    rule_id: str,
    domain: str,
    upstream: str,
    *,
    base_domain: str,
    settings: Settings,
    require_auth: bool = False,
    local_only: bool = False,
    env_id: str | None = None,
) -> dict[str, Any]:
    """Compose the handler chain of one host-matched rule."""
    if require_auth:
        inner = [auth_subroute(upstream, settings, base_domain, env_id)]
    else:
        inner = [reverse_proxy(upstream)]

    if local_only:
        inner = [local_only_subroute(inner)]

    return {
        "@id": rule_id,
        "match": [{"host": [domain]}],
        "handle": [security_headers(base_domain), *inner],
        "terminal": True,
    }


def _system_routes(registry: Registry, settings: Settings) -> list[CompiledRoute]:
    upstreams = {
        SYSTEM_DASHBOARD_ID: settings.dashboard_upstream,
        SYSTEM_AUTH_ID: settings.auth_upstream,
    }
    routes = []
    for rule_id, domain in system_domains(registry.base_domain).items():
        upstream = upstreams[rule_id]
        routes.append(CompiledRoute(
            rule_id=rule_id,
            domain=domain,
            upstream=upstream,
            system=True,
            rule=build_rule(
                rule_id, domain, upstream,
                base_domain=registry.base_domain,
                settings=settings,
            ),
        ))
    return routes


def _target_route(target: Target, registry: Registry, settings: Settings) -> CompiledRoute:
    endpoint = target.endpoint
    env_id = target.environment.id if target.environment else None
    return CompiledRoute(
        rule_id=target.rule_id,
        domain=target.domain,
        upstream=target.upstream,
        require_auth=endpoint.require_auth,
        local_only=endpoint.local_only,
        rule=build_rule(
            target.rule_id,
            target.domain,
            target.upstream,
            base_domain=registry.base_domain,
            settings=settings,
            require_auth=endpoint.require_auth,
            local_only=endpoint.local_only,
            env_id=env_id,
        ),
    )


def compile_routes(registry: Registry, settings: Settings) -> list[CompiledRoute]:
    """Compile the registry into ordered routing rules.

    Args:
        registry: The current registry (already migrated and validated).
        settings: Upstreams of the system routes and the auth service.

    Returns:
        System routes first, then enabled application endpoints, then
        enabled hosts.
    """
    routes = _system_routes(registry, settings)
    for target in iter_targets(registry):
        routes.append(_target_route(target, registry, settings))

    logger.debug("Compiled %d routes", len(routes))
    return routes


def compile_config(registry: Registry, settings: Settings) -> dict[str, Any]:
    """Compile the full proxy configuration document.

    Returns:
        ``{"admin": ..., "apps": {"http": ..., "tls": ...}}`` ready for
        the control plane's load endpoint.
    """
    routes = compile_routes(registry, settings)
    tls = build_tls_policy(
        registry,
        routes,
        credential_present=settings.has_cloudflare_credential,
        token_env=settings.cloudflare_token_env,
    )

    server: dict[str, Any] = {
        "listen": list(settings.listen),
        "routes": [r.rule for r in routes],
    }
    if tls.automatic_https:
        server["automatic_https"] = tls.automatic_https

    return {
        "admin": {"listen": settings.admin_listen},
        "apps": {
            "http": {"servers": {settings.server_name: server}},
            "tls": tls.tls_app,
        },
    }
