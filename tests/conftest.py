"""
Shared test fixtures and configuration.
"""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from src.core.config.loader import Settings
from src.core.models.registry import (
    Application,
    Endpoint,
    EndpointSet,
    Host,
    Registry,
    SlottedEndpoint,
)
from src.core.services.proxy_client import ProxyControlClient, PushResult


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a registry file inside tmp_path."""
    return Settings(
        registry_path=tmp_path / "reverseproxy-config.json",
        proxy_admin_url="http://proxy.test:2019",
        dashboard_upstream="localhost:4000",
        auth_upstream="localhost:9100",
    )


@pytest.fixture
def token_settings(settings: Settings) -> Settings:
    """Settings with a Cloudflare API token configured."""
    return settings.model_copy(update={"cloudflare_api_token": "cf-secret"})


@pytest.fixture
def fake_client() -> MagicMock:
    """Proxy client whose pushes succeed and converge."""
    client = MagicMock(spec=ProxyControlClient)
    client.push.return_value = PushResult(ok=True, status_code=200, duration_ms=3)
    client.confirm.return_value = True
    client.status.return_value = {
        "reachable": True,
        "loaded": True,
        "adminUrl": "http://proxy.test:2019",
        "routes": 4,
        "latencyMs": 1,
    }
    return client


@pytest.fixture
def failing_client() -> MagicMock:
    """Proxy client whose admin endpoint is down."""
    client = MagicMock(spec=ProxyControlClient)
    client.push.return_value = PushResult(
        ok=False, error="Proxy control plane unreachable: [Errno 111] Connection refused",
    )
    client.confirm.return_value = False
    return client


@pytest.fixture
def registry() -> Registry:
    """A small registry: one app in prod and dev, one host."""
    return Registry(
        base_domain="example.com",
        applications=[
            Application(
                id="app1",
                name="Shop",
                slug="shop",
                endpoints={
                    "prod": EndpointSet(
                        frontend=Endpoint(target_host="10.0.0.5", target_port=3000),
                        apis=[SlottedEndpoint(target_host="10.0.0.5", target_port=3001)],
                    ),
                    "dev": EndpointSet(
                        frontend=Endpoint(
                            target_host="10.0.0.6", target_port=5173, require_auth=True,
                        ),
                    ),
                },
            ),
        ],
        hosts=[
            Host(
                id="h1",
                subdomain="www",
                target_host="192.168.1.10",
                target_port=8080,
            ),
        ],
    )
