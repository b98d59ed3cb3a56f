"""
Domain models — Pydantic types for the edge proxy registry.

All models are re-exported here for convenient access:

    from src.core.models import Registry, Application, Host, Frontend, Api
"""

from src.core.models.endpoint import Api, EndpointKind, Frontend
from src.core.models.registry import (
    CURRENT_SCHEMA_VERSION,
    Application,
    CloudflareSettings,
    Endpoint,
    EndpointSet,
    Environment,
    Host,
    Registry,
    SlottedEndpoint,
)

__all__ = [
    "CURRENT_SCHEMA_VERSION",
    # endpoint.py
    "Api",
    "EndpointKind",
    "Frontend",
    # registry.py
    "Application",
    "CloudflareSettings",
    "Endpoint",
    "EndpointSet",
    "Environment",
    "Host",
    "Registry",
    "SlottedEndpoint",
]
