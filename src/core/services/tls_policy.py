"""
TLS policy builder — how the proxy obtains certificates.

Two strategies, never mixed in one configuration:

    wildcard   The Cloudflare provider is enabled and its API token is
               configured: one ACME DNS-01 policy covering the explicit
               wildcard patterns (*.<prefix>.<base>, *.<apiPrefix>.<base>
               per environment). Hostnames covered by a wildcard use it.
    per-host   Otherwise: one ACME policy listing every hostname of the
               compiled routes (HTTP/TLS-ALPN challenges, no wildcard).
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from src.core.models.registry import Registry

if TYPE_CHECKING:
    from src.core.services.route_compiler import CompiledRoute

logger = logging.getLogger(__name__)

STRATEGY_WILDCARD = "wildcard"
STRATEGY_PER_HOST = "per_host"


@dataclass
class TlsPolicy:
    """The chosen issuance strategy and the JSON fragments implementing it."""

    strategy: str
    subjects: list[str] = field(default_factory=list)
    tls_app: dict[str, Any] = field(default_factory=dict)
    automatic_https: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"strategy": self.strategy, "subjects": self.subjects}


def derive_wildcard_domains(registry: Registry) -> list[str]:
    """Wildcard patterns covering every environment's labels.

    ``*.<base>`` is always included: it covers the system routes, hosts
    using a subdomain, and frontends of environments without a prefix.
    """
    base = registry.base_domain
    if not base:
        return []

    patterns = {f"*.{base}"}
    for env in registry.environments:
        if env.prefix:
            patterns.add(f"*.{env.prefix}.{base}")
        if env.api_prefix:
            patterns.add(f"*.{env.api_prefix}.{base}")
    return sorted(patterns)


def _wildcard_policy(subjects: list[str], token_env: str) -> TlsPolicy:
    issuer = {
        "module": "acme",
        "challenges": {
            "dns": {
                "provider": {
                    "name": "cloudflare",
                    "api_token": f"{{env.{token_env}}}",
                },
            },
        },
    }
    return TlsPolicy(
        strategy=STRATEGY_WILDCARD,
        subjects=subjects,
        tls_app={
            "certificates": {"automate": list(subjects)},
            "automation": {"policies": [{"subjects": list(subjects), "issuers": [issuer]}]},
        },
        automatic_https={"prefer_wildcard": True},
    )


def _per_host_policy(routes: Sequence[CompiledRoute]) -> TlsPolicy:
    subjects = list(dict.fromkeys(r.domain for r in routes))
    if not subjects:
        return TlsPolicy(strategy=STRATEGY_PER_HOST)
    return TlsPolicy(
        strategy=STRATEGY_PER_HOST,
        subjects=subjects,
        tls_app={
            "automation": {"policies": [{"subjects": subjects, "issuers": [{"module": "acme"}]}]},
        },
    )


def build_tls_policy(
    registry: Registry,
    routes: Sequence[CompiledRoute],
    credential_present: bool,
    token_env: str = "CF_API_TOKEN",
) -> TlsPolicy:
    """Choose the issuance strategy for a compiled configuration.

    Args:
        registry: Source of the provider settings and wildcard patterns.
        routes: Compiled routes (their hostnames feed the per-host policy).
        credential_present: Whether the provider API token is configured.
        token_env: Environment variable the proxy reads the token from;
            the token itself never appears in the configuration.
    """
    provider = registry.cloudflare
    wildcards = provider.wildcard_domains or derive_wildcard_domains(registry)

    if provider.enabled and credential_present and wildcards:
        logger.debug("TLS: wildcard DNS-01 for %d patterns", len(wildcards))
        return _wildcard_policy(list(wildcards), token_env)

    if provider.enabled and not credential_present:
        logger.warning("Cloudflare wildcard enabled but no API token configured; "
                       "falling back to per-host certificates")
    return _per_host_policy(routes)
