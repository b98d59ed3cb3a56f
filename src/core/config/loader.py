"""
Configuration loader — reads homeroute.yml into runtime settings.

Settings describe where things live (the registry document, the
proxy's admin endpoint, the dashboard and auth upstreams) rather than
what is routed; the routing itself is the registry. The YAML file is
optional — every field has a default and can be overridden from the
environment, which is how the service is usually deployed.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Default config filename
SETTINGS_FILE = "homeroute.yml"

DEFAULT_REGISTRY_PATH = "/var/lib/server-dashboard/reverseproxy-config.json"

# env var → settings field
_ENV_OVERRIDES = {
    "HOMEROUTE_REGISTRY": "registry_path",
    "HOMEROUTE_PROXY_ADMIN": "proxy_admin_url",
    "HOMEROUTE_DASHBOARD_UPSTREAM": "dashboard_upstream",
    "HOMEROUTE_AUTH_UPSTREAM": "auth_upstream",
}


class ConfigError(Exception):
    """Raised when the settings file is invalid or unreadable."""


class Settings(BaseModel):
    """Runtime settings of the compiler, control client and monitor."""

    registry_path: Path = Path(DEFAULT_REGISTRY_PATH)

    # Proxy control plane
    proxy_admin_url: str = "http://localhost:2019"
    push_timeout: float = 10.0
    confirm_push: bool = True

    # Compiled server
    server_name: str = "edge"
    listen: list[str] = Field(default_factory=lambda: [":443"])

    # System upstreams (host:port)
    dashboard_upstream: str = "localhost:4000"
    auth_upstream: str = "localhost:4000"
    forward_auth_path: str = "/api/authz/forward-auth"

    # Certificate monitor
    cert_probe_port: int = 443
    cert_probe_timeout: float = 5.0
    cert_probe_workers: int = 8

    # Wildcard TLS provider credential
    cloudflare_token_env: str = "CF_API_TOKEN"
    cloudflare_api_token: str | None = None

    @property
    def admin_listen(self) -> str:
        """host:port the proxy's admin endpoint listens on."""
        address = self.proxy_admin_url.split("://", 1)[-1]
        return address.rstrip("/").split("/", 1)[0]

    @property
    def has_cloudflare_credential(self) -> bool:
        return bool(self.cloudflare_api_token)


def find_settings_file(start_dir: Path | None = None) -> Path | None:
    """Search for homeroute.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to homeroute.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / SETTINGS_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_settings(
    path: Path | None = None,
    environ: dict[str, str] | None = None,
) -> Settings:
    """Load settings from YAML (if any) and apply environment overrides.

    Args:
        path: Explicit path to homeroute.yml. If None, searches upward;
            a missing file means defaults.
        environ: Environment mapping (default: ``os.environ``).

    Returns:
        Validated Settings.

    Raises:
        ConfigError: If an explicit file is missing, or any file is invalid.
    """
    env = os.environ if environ is None else environ
    data: dict = {}

    if path is not None and not path.is_file():
        raise ConfigError(f"Settings file not found: {path}")

    if path is None:
        path = find_settings_file()

    if path is not None:
        logger.debug("Loading settings from %s", path)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}") from e

        try:
            loaded = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(
                f"Expected a YAML mapping in {path}, got {type(loaded).__name__}"
            )

        # The YAML may wrap everything under a "homeroute" key or be flat
        data = dict(loaded.get("homeroute", loaded))

    for var, field_name in _ENV_OVERRIDES.items():
        if env.get(var):
            data[field_name] = env[var]

    token_env = data.get("cloudflare_token_env", "CF_API_TOKEN")
    if env.get(token_env):
        data["cloudflare_api_token"] = env[token_env]

    try:
        settings = Settings.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid settings: {e}") from e

    logger.info("Settings loaded (registry=%s, admin=%s)",
                settings.registry_path, settings.proxy_admin_url)
    return settings
