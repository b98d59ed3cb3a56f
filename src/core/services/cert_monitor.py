"""
Certificate monitor — what certificate each configured hostname serves.

Opens a TLS connection (with SNI) to every routed hostname and reads
the served certificate. The trust chain is not verified:
the monitor reports the certificate's own fields (expiry, issuer,
subject) so that self-signed or staging certificates still show up.

Probes are independent blocking handshakes and run in a thread pool;
each writes only its own result.
"""

from __future__ import annotations

import logging
import math
import socket
import ssl
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from cryptography import x509
from cryptography.x509.oid import NameOID

from src.core.config.loader import Settings
from src.core.models.registry import Registry
from src.core.services.domain_names import (
    SYSTEM_DASHBOARD_ID,
    host_domain,
    iter_targets,
    system_domains,
)

logger = logging.getLogger(__name__)


@dataclass
class CertificateStatus:
    """Certificate served for one hostname, or why none could be read."""

    domain: str
    valid: bool = False
    days_remaining: int | None = None
    expires_at: str | None = None
    issuer: str | None = None
    subject: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.error:
            return {"domain": self.domain, "valid": False, "error": self.error}
        return {
            "domain": self.domain,
            "valid": self.valid,
            "daysRemaining": self.days_remaining,
            "expiresAt": self.expires_at,
            "issuer": self.issuer,
            "subject": self.subject,
        }


def _name_attr(name: x509.Name, *oids: x509.ObjectIdentifier) -> str | None:
    for oid in oids:
        attrs = name.get_attributes_for_oid(oid)
        if attrs:
            return str(attrs[0].value)
    return None


def _fetch_der(hostname: str, port: int, timeout: float) -> bytes | None:
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE

    with socket.create_connection((hostname, port), timeout=timeout) as sock:
        with context.wrap_socket(sock, server_hostname=hostname) as tls:
            return tls.getpeercert(binary_form=True)


def inspect_certificate(
    der: bytes,
    domain: str,
    now: datetime | None = None,
) -> CertificateStatus:
    """Build a status from a DER-encoded certificate."""
    cert = x509.load_der_x509_certificate(der)
    expires = cert.not_valid_after_utc
    now = now or datetime.now(UTC)
    days = math.floor((expires - now).total_seconds() / 86400)

    return CertificateStatus(
        domain=domain,
        valid=days > 0,
        days_remaining=days,
        expires_at=expires.isoformat(),
        issuer=_name_attr(cert.issuer, NameOID.ORGANIZATION_NAME, NameOID.COMMON_NAME)
        or "Unknown",
        subject=_name_attr(cert.subject, NameOID.COMMON_NAME) or domain,
    )


def probe_certificate(
    hostname: str,
    port: int = 443,
    timeout: float = 5.0,
    now: datetime | None = None,
) -> CertificateStatus:
    """Handshake with ``hostname`` and report the certificate it serves.

    Never raises: timeouts, refused connections, TLS failures and
    missing certificates are reported as ``valid=False`` with a reason.
    """
    try:
        der = _fetch_der(hostname, port, timeout)
    except (socket.timeout, TimeoutError):
        return CertificateStatus(domain=hostname, error="Timeout")
    except ConnectionRefusedError:
        return CertificateStatus(domain=hostname, error="Connection refused")
    except ssl.SSLError as e:
        reason = getattr(e, "reason", None) or e
        return CertificateStatus(domain=hostname, error=f"TLS error: {reason}")
    except OSError as e:
        return CertificateStatus(domain=hostname, error=str(e) or "Connection failed")

    if not der:
        return CertificateStatus(domain=hostname, error="No certificate found")

    try:
        return inspect_certificate(der, hostname, now=now)
    except ValueError as e:
        return CertificateStatus(domain=hostname, error=f"Unreadable certificate: {e}")


def check_certificates(registry: Registry, settings: Settings) -> dict[str, CertificateStatus]:
    """Probe every configured hostname, keyed by compiled rule id.

    Enabled hosts and application endpoints are probed, plus the
    dashboard's system route. Disabled hosts are listed without a probe.
    """
    domains: dict[str, str] = {}
    results: dict[str, CertificateStatus] = {}

    for target in iter_targets(registry):
        domains[target.rule_id] = target.domain

    dashboard = system_domains(registry.base_domain).get(SYSTEM_DASHBOARD_ID)
    if dashboard:
        domains[SYSTEM_DASHBOARD_ID] = dashboard

    for host in registry.hosts:
        if not host.enabled:
            results[host.id] = CertificateStatus(
                domain=host_domain(host, registry.base_domain),
                error="Host disabled",
            )

    if not domains:
        return results

    workers = max(1, min(settings.cert_probe_workers, len(domains)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {
            rule_id: pool.submit(
                probe_certificate,
                domain,
                settings.cert_probe_port,
                settings.cert_probe_timeout,
            )
            for rule_id, domain in domains.items()
        }
        for rule_id, future in futures.items():
            results[rule_id] = future.result()

    failed = [r for r in results.values() if not r.valid]
    if failed:
        logger.info("Certificate check: %d of %d not valid", len(failed), len(results))
    return results
