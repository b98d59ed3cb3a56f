"""
Endpoint kinds — the tagged variant for application endpoints.

An application exposes, per environment, at most one frontend and any
number of APIs. Every consumer (domain deriver, route compiler,
certificate monitor) switches on the kind instead of sniffing the
shape of the endpoint object.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Frontend:
    """The application's browser-facing endpoint."""

    @property
    def label(self) -> str:
        return "frontend"


@dataclass(frozen=True)
class Api:
    """An API endpoint; ``slug`` disambiguates several APIs of one app."""

    slug: str = ""

    @property
    def label(self) -> str:
        return "api"


EndpointKind = Frontend | Api
