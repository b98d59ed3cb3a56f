"""
Registry — the declarative domain model of the edge proxy.

A single versioned document holding the base domain, environments,
applications, standalone hosts and the wildcard TLS provider settings.
It is persisted as camelCase JSON (the dashboard frontend reads the
same shape) and loaded into these models on every operation.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Current persisted document layout; see persistence/migrations.py
CURRENT_SCHEMA_VERSION = 3


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


def new_id() -> str:
    """Random identifier for a new host or application."""
    return str(uuid.uuid4())


class _Document(BaseModel):
    """Base for every persisted model: camelCase on disk, snake_case in code."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_json(self) -> dict:
        """Serialize with the on-disk (camelCase) keys."""
        return self.model_dump(mode="json", by_alias=True)


class Endpoint(_Document):
    """Where an external hostname is proxied to, and how it is guarded."""

    target_host: str
    target_port: int = Field(ge=1, le=65535)
    local_only: bool = False
    require_auth: bool = False


class SlottedEndpoint(Endpoint):
    """An API endpoint; ``slug`` tells several APIs of one app apart."""

    slug: str = ""


class EndpointSet(_Document):
    """All endpoints of one application in one environment."""

    frontend: Endpoint | None = None
    apis: list[SlottedEndpoint] = Field(default_factory=list)


class Environment(_Document):
    """A naming context (prod, dev, ...) contributing subdomain labels."""

    id: str
    name: str
    prefix: str = ""
    api_prefix: str = "api"
    is_default: bool = False


class Application(_Document):
    """An application with per-environment frontend and API endpoints."""

    id: str = Field(default_factory=new_id)
    name: str = ""
    slug: str
    enabled: bool = True
    created_at: str = Field(default_factory=_now_iso)
    endpoints: dict[str, EndpointSet] = Field(default_factory=dict)


class Host(_Document):
    """A standalone route: one hostname to one upstream."""

    id: str = Field(default_factory=new_id)
    subdomain: str | None = None
    custom_domain: str | None = None
    target_host: str
    target_port: int = Field(ge=1, le=65535)
    local_only: bool = False
    require_auth: bool = False
    enabled: bool = True
    created_at: str = Field(default_factory=_now_iso)


class CloudflareSettings(_Document):
    """Wildcard certificate provider (DNS-01 challenge through Cloudflare)."""

    enabled: bool = False
    wildcard_domains: list[str] = Field(default_factory=list)


def default_environments() -> list[Environment]:
    """The environments a brand-new registry starts with."""
    return [
        Environment(id="prod", name="Production", prefix="", api_prefix="api", is_default=True),
        Environment(id="dev", name="Development", prefix="dev", api_prefix="api.dev"),
    ]


class Registry(_Document):
    """Root document — serialized to the registry JSON file.

    ``version`` is the optimistic write counter: every successful save
    increments it, and a save based on a stale read is rejected.
    """

    schema_version: int = CURRENT_SCHEMA_VERSION
    version: int = 0

    base_domain: str = ""
    environments: list[Environment] = Field(default_factory=default_environments)
    applications: list[Application] = Field(default_factory=list)
    hosts: list[Host] = Field(default_factory=list)
    cloudflare: CloudflareSettings = Field(default_factory=CloudflareSettings)

    def get_environment(self, env_id: str) -> Environment | None:
        """Look up an environment by id."""
        for env in self.environments:
            if env.id == env_id:
                return env
        return None

    def get_application(self, app_id: str) -> Application | None:
        """Look up an application by id."""
        for app in self.applications:
            if app.id == app_id:
                return app
        return None

    def get_host(self, host_id: str) -> Host | None:
        """Look up a host by id."""
        for host in self.hosts:
            if host.id == host_id:
                return host
        return None

    def default_environment(self) -> Environment | None:
        """Get the default environment, or the first one."""
        for env in self.environments:
            if env.is_default:
                return env
        return self.environments[0] if self.environments else None

    def applications_using(self, env_id: str) -> list[Application]:
        """Applications with endpoints declared for an environment."""
        return [a for a in self.applications if env_id in a.endpoints]
