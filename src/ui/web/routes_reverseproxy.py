"""
Reverse proxy routes — registry management for the edge proxy.

Blueprint: reverseproxy_bp
Prefix: /api/reverseproxy

Endpoints:
    GET    /config                     — base domain
    PUT    /config/domain              — set base domain
    GET    /hosts                      — standalone hosts
    POST   /hosts                      — add host
    PUT    /hosts/<id>                 — update host
    DELETE /hosts/<id>                 — delete host
    POST   /hosts/<id>/toggle          — enable/disable host
    GET    /environments               — environments
    POST   /environments               — add environment
    PUT    /environments/<id>          — update environment
    DELETE /environments/<id>          — delete environment (if unused)
    GET    /applications               — applications
    POST   /applications               — add application
    PUT    /applications/<id>          — update application
    DELETE /applications/<id>          — delete application
    POST   /applications/<id>/toggle   — enable/disable application
    GET    /cloudflare                 — wildcard certificate settings
    PUT    /cloudflare                 — enable/disable wildcard certificates
    GET    /status                     — proxy control plane status
    POST   /reload                     — recompile and push
    GET    /certificates/status        — served certificate per hostname
    POST   /certificates/renew         — push again to retry issuance
    GET    /system-route               — dashboard route
    GET    /compiled                   — compiled document preview (no push)

Domain failures are reported as ``{"success": false, "error": ...}``
with HTTP 200, as the dashboard expects.
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from src.core.config.loader import Settings
from src.core.services import registry_ops
from src.core.services.proxy_client import ProxyControlClient

reverseproxy_bp = Blueprint("reverseproxy", __name__)


def _settings() -> Settings:
    return current_app.config["SETTINGS"]


def _client() -> ProxyControlClient | None:
    return current_app.config.get("PROXY_CLIENT")


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# ── Base domain ─────────────────────────────────────────────────


@reverseproxy_bp.route("/config")
def get_config():  # type: ignore[no-untyped-def]
    return jsonify(registry_ops.get_config(_settings()))


@reverseproxy_bp.route("/config/domain", methods=["PUT"])
def update_domain():  # type: ignore[no-untyped-def]
    """Set the base domain."""
    return jsonify(registry_ops.update_base_domain(
        _settings(), _body().get("baseDomain"), client=_client(),
    ))


# ── Hosts ───────────────────────────────────────────────────────


@reverseproxy_bp.route("/hosts")
def list_hosts():  # type: ignore[no-untyped-def]
    return jsonify(registry_ops.get_hosts(_settings()))


@reverseproxy_bp.route("/hosts", methods=["POST"])
def add_host():  # type: ignore[no-untyped-def]
    return jsonify(registry_ops.add_host(_settings(), _body(), client=_client()))


@reverseproxy_bp.route("/hosts/<host_id>", methods=["PUT"])
def update_host(host_id: str):  # type: ignore[no-untyped-def]
    return jsonify(registry_ops.update_host(
        _settings(), host_id, _body(), client=_client(),
    ))


@reverseproxy_bp.route("/hosts/<host_id>", methods=["DELETE"])
def delete_host(host_id: str):  # type: ignore[no-untyped-def]
    return jsonify(registry_ops.delete_host(_settings(), host_id, client=_client()))


@reverseproxy_bp.route("/hosts/<host_id>/toggle", methods=["POST"])
def toggle_host(host_id: str):  # type: ignore[no-untyped-def]
    return jsonify(registry_ops.toggle_host(
        _settings(), host_id, _body().get("enabled"), client=_client(),
    ))


# ── Environments ────────────────────────────────────────────────


@reverseproxy_bp.route("/environments")
def list_environments():  # type: ignore[no-untyped-def]
    return jsonify(registry_ops.get_environments(_settings()))


@reverseproxy_bp.route("/environments", methods=["POST"])
def add_environment():  # type: ignore[no-untyped-def]
    return jsonify(registry_ops.add_environment(_settings(), _body(), client=_client()))


@reverseproxy_bp.route("/environments/<env_id>", methods=["PUT"])
def update_environment(env_id: str):  # type: ignore[no-untyped-def]
    return jsonify(registry_ops.update_environment(
        _settings(), env_id, _body(), client=_client(),
    ))


@reverseproxy_bp.route("/environments/<env_id>", methods=["DELETE"])
def delete_environment(env_id: str):  # type: ignore[no-untyped-def]
    """Delete an environment no application uses."""
    return jsonify(registry_ops.delete_environment(_settings(), env_id, client=_client()))


# ── Applications ────────────────────────────────────────────────


@reverseproxy_bp.route("/applications")
def list_applications():  # type: ignore[no-untyped-def]
    return jsonify(registry_ops.get_applications(_settings()))


@reverseproxy_bp.route("/applications", methods=["POST"])
def add_application():  # type: ignore[no-untyped-def]
    return jsonify(registry_ops.add_application(_settings(), _body(), client=_client()))


@reverseproxy_bp.route("/applications/<app_id>", methods=["PUT"])
def update_application(app_id: str):  # type: ignore[no-untyped-def]
    return jsonify(registry_ops.update_application(
        _settings(), app_id, _body(), client=_client(),
    ))


@reverseproxy_bp.route("/applications/<app_id>", methods=["DELETE"])
def delete_application(app_id: str):  # type: ignore[no-untyped-def]
    return jsonify(registry_ops.delete_application(_settings(), app_id, client=_client()))


@reverseproxy_bp.route("/applications/<app_id>/toggle", methods=["POST"])
def toggle_application(app_id: str):  # type: ignore[no-untyped-def]
    return jsonify(registry_ops.toggle_application(
        _settings(), app_id, _body().get("enabled"), client=_client(),
    ))


# ── Wildcard certificates ───────────────────────────────────────


@reverseproxy_bp.route("/cloudflare")
def get_cloudflare():  # type: ignore[no-untyped-def]
    return jsonify(registry_ops.get_cloudflare(_settings()))


@reverseproxy_bp.route("/cloudflare", methods=["PUT"])
def update_cloudflare():  # type: ignore[no-untyped-def]
    return jsonify(registry_ops.update_cloudflare(_settings(), _body(), client=_client()))


# ── Proxy & certificates ────────────────────────────────────────


@reverseproxy_bp.route("/status")
def proxy_status():  # type: ignore[no-untyped-def]
    """Proxy control plane reachability."""
    return jsonify(registry_ops.proxy_status(_settings(), client=_client()))


@reverseproxy_bp.route("/reload", methods=["POST"])
def reload_proxy():  # type: ignore[no-untyped-def]
    """Recompile the registry and push it to the proxy."""
    return jsonify(registry_ops.reload_proxy(_settings(), client=_client()))


@reverseproxy_bp.route("/certificates/status")
def certificates_status():  # type: ignore[no-untyped-def]
    """Served certificate per configured hostname."""
    return jsonify(registry_ops.certificates_status(_settings()))


@reverseproxy_bp.route("/certificates/renew", methods=["POST"])
def certificates_renew():  # type: ignore[no-untyped-def]
    """Push the configuration again so the proxy retries issuance."""
    return jsonify(registry_ops.renew_certificates(_settings(), client=_client()))


@reverseproxy_bp.route("/system-route")
def system_route():  # type: ignore[no-untyped-def]
    return jsonify(registry_ops.system_route_status(_settings()))


@reverseproxy_bp.route("/compiled")
def compiled():  # type: ignore[no-untyped-def]
    """Compiled configuration preview; nothing is pushed."""
    return jsonify(registry_ops.compiled_preview(_settings()))
