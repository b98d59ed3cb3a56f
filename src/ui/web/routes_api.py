"""
API routes — service-level endpoints.

All endpoints return JSON. Grouped under /api/ prefix.
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify

from src.core.config.loader import Settings

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__)


def _settings() -> Settings:
    return current_app.config["SETTINGS"]


# ── Health ───────────────────────────────────────────────────────────


@api_bp.route("/health")
def api_health():  # type: ignore[no-untyped-def]
    """System health status."""
    from src.core.observability.health import check_system_health

    health = check_system_health(_settings(), client=current_app.config.get("PROXY_CLIENT"))
    return jsonify(health.to_dict())


# ── Registry check ───────────────────────────────────────────────────


@api_bp.route("/config/check")
def api_config_check():  # type: ignore[no-untyped-def]
    """Validate the stored registry document."""
    from src.core.use_cases.config_check import check_registry

    return jsonify(check_registry(_settings().registry_path).to_dict())
