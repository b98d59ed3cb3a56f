"""
Proxy control client — the edge proxy's administrative API.

    POST {admin}/load      replace the whole active configuration
    GET  {admin}/config/   read the active configuration

One attempt per call, bounded by a timeout. Retrying is the caller's
decision; a timed-out push may still be applied by the proxy.
"""

from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.request
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

_USER_AGENT = "homeroute/1.0"


@dataclass
class PushResult:
    """Outcome of one configuration push."""

    ok: bool
    status_code: int | None = None
    error: str | None = None
    duration_ms: int = 0
    converged: bool | None = None  # None = not checked

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "statusCode": self.status_code,
            "error": self.error,
            "durationMs": self.duration_ms,
            "converged": self.converged,
        }


def collect_route_ids(config: Any) -> set[str]:
    """Every ``@id`` found anywhere in a configuration document."""
    ids: set[str] = set()
    if isinstance(config, dict):
        if isinstance(config.get("@id"), str):
            ids.add(config["@id"])
        for value in config.values():
            ids |= collect_route_ids(value)
    elif isinstance(config, list):
        for item in config:
            ids |= collect_route_ids(item)
    return ids


class ProxyControlClient:
    """Client for the proxy's admin endpoint."""

    def __init__(self, admin_url: str, timeout: float = 10.0) -> None:
        self.admin_url = admin_url.rstrip("/")
        self.timeout = timeout

    def _request(
        self,
        method: str,
        path: str,
        body: Any = None,
        timeout: float | None = None,
    ) -> tuple[int, bytes]:
        data = None
        headers = {"User-Agent": _USER_AGENT}
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"

        req = urllib.request.Request(
            f"{self.admin_url}{path}",
            data=data,
            method=method,
            headers=headers,
        )
        with urllib.request.urlopen(req, timeout=timeout or self.timeout) as resp:
            return resp.getcode(), resp.read()

    def push(self, config: dict[str, Any]) -> PushResult:
        """Replace the proxy's active configuration.

        Returns:
            PushResult; unreachable endpoints and non-2xx answers are
            reported, never raised.
        """
        start = time.monotonic()
        try:
            status, _ = self._request("POST", "/load", body=config)
        except urllib.error.HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace").strip()[:300]
            elapsed = int((time.monotonic() - start) * 1000)
            logger.warning("Proxy rejected configuration (HTTP %d): %s", e.code, detail)
            return PushResult(
                ok=False,
                status_code=e.code,
                error=f"Proxy returned HTTP {e.code}: {detail}" if detail
                else f"Proxy returned HTTP {e.code}",
                duration_ms=elapsed,
            )
        except (urllib.error.URLError, OSError) as e:
            elapsed = int((time.monotonic() - start) * 1000)
            reason = getattr(e, "reason", e)
            logger.warning("Proxy control plane unreachable: %s", reason)
            return PushResult(
                ok=False,
                error=f"Proxy control plane unreachable: {reason}",
                duration_ms=elapsed,
            )

        elapsed = int((time.monotonic() - start) * 1000)
        logger.info("Configuration pushed to %s (%dms)", self.admin_url, elapsed)
        return PushResult(ok=True, status_code=status, duration_ms=elapsed)

    def active_config(self) -> Any:
        """The configuration currently loaded (None if empty).

        Raises:
            urllib.error.URLError / OSError: if the endpoint is unreachable.
        """
        _, raw = self._request("GET", "/config/")
        text = raw.decode("utf-8").strip()
        if not text:
            return None
        return json.loads(text)

    def status(self) -> dict[str, Any]:
        """Control-plane reachability and whether a configuration is loaded."""
        start = time.monotonic()
        try:
            config = self.active_config()
        except (urllib.error.URLError, OSError, ValueError) as e:
            reason = getattr(e, "reason", e)
            return {
                "reachable": False,
                "loaded": False,
                "adminUrl": self.admin_url,
                "error": str(reason)[:200],
                "latencyMs": int((time.monotonic() - start) * 1000),
            }
        return {
            "reachable": True,
            "loaded": bool(config),
            "adminUrl": self.admin_url,
            "routes": len(collect_route_ids(config)),
            "latencyMs": int((time.monotonic() - start) * 1000),
        }

    def confirm(self, expected_ids: Iterable[str]) -> bool:
        """Whether every expected route ``@id`` is in the active configuration."""
        try:
            live = collect_route_ids(self.active_config())
        except (urllib.error.URLError, OSError, ValueError) as e:
            logger.warning("Cannot confirm proxy configuration: %s", e)
            return False
        missing = set(expected_ids) - live
        if missing:
            logger.warning("Proxy is missing %d pushed routes", len(missing))
        return not missing
