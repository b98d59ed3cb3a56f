"""
Routing API server — Flask app factory.

Creates and configures the Flask application serving the reverse
proxy management API consumed by the dashboard.
"""

from __future__ import annotations

import logging

from flask import Flask

from src.core.config.loader import Settings, load_settings
from src.core.services.proxy_client import ProxyControlClient

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    client: ProxyControlClient | None = None,
    sync_on_start: bool = False,
) -> Flask:
    """Create and configure the Flask application.

    Args:
        settings: Runtime settings (default: ``load_settings()``).
        client: Proxy client shared by all requests (default: one per
            request, built from settings).
        sync_on_start: Push the stored registry to the proxy once, so a
            restarted proxy gets its routes back.

    Returns:
        Configured Flask application.
    """
    app = Flask(__name__)

    settings = settings or load_settings()
    app.config["SETTINGS"] = settings
    app.config["PROXY_CLIENT"] = client
    app.config["MAX_CONTENT_LENGTH"] = 1024 * 1024  # registry payloads are small

    from src.ui.web.routes_api import api_bp
    from src.ui.web.routes_reverseproxy import reverseproxy_bp

    app.register_blueprint(api_bp, url_prefix="/api")
    app.register_blueprint(reverseproxy_bp, url_prefix="/api/reverseproxy")

    if sync_on_start:
        from src.core.services.registry_ops import reload_proxy

        result = reload_proxy(settings, client)
        if result["success"]:
            logger.info("Startup sync pushed %d routes", result["apply"]["routes"])
        else:
            logger.warning("Startup sync failed: %s", result["error"])

    logger.info("Routing API app created (registry=%s)", settings.registry_path)
    return app


def run_server(
    app: Flask,
    host: str = "127.0.0.1",
    port: int = 8000,
    debug: bool = False,
) -> None:
    """Run the Flask development server."""
    logger.info("Starting routing API on %s:%d", host, port)
    app.run(host=host, port=port, debug=debug, use_reloader=False)
