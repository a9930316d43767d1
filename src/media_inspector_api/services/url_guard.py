"""Admission policy for caller-supplied URLs (SSRF guard).

The check is a pure function of the URL string: the hostname is parsed as
an IP literal where possible and tested numerically against reserved
ranges. Names that are not literals are allowed without DNS resolution, so
a public name resolving to a private address is not caught here.
"""
from __future__ import annotations

import ipaddress
import logging
import re
import socket
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union
from urllib.parse import urlsplit

from ..errors import ForbiddenTargetError, InvalidInputError

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_ALLOWED_SCHEMES = frozenset({"http", "https"})

# (network, reason) - first match wins
_DENIED_NETWORKS: List[Tuple[Union[ipaddress.IPv4Network, ipaddress.IPv6Network], str]] = [
    (ipaddress.ip_network("127.0.0.0/8"), "loopback"),
    (ipaddress.ip_network("10.0.0.0/8"), "private-network"),
    (ipaddress.ip_network("172.16.0.0/12"), "private-network"),
    (ipaddress.ip_network("192.168.0.0/16"), "private-network"),
    (ipaddress.ip_network("0.0.0.0/8"), "this-network"),
    (ipaddress.ip_network("169.254.0.0/16"), "link-local"),
    (ipaddress.ip_network("::1/128"), "loopback"),
    (ipaddress.ip_network("::/128"), "this-network"),
    (ipaddress.ip_network("fe80::/10"), "link-local"),
    (ipaddress.ip_network("fc00::/7"), "private-network"),
]

# Shapes inet_aton accepts: 127.1, 0x7f.0.0.1, 2130706433
_LOOSE_IPV4_RE = re.compile(r"^(0x[0-9a-f]+|[0-9]+)(\.(0x[0-9a-f]+|[0-9]+)){0,3}$", re.IGNORECASE)


@dataclass(frozen=True)
class AdmissionVerdict:
    """Result of admitting a URL."""
    allowed: bool
    reason: Optional[str] = None


def _extract_host(raw_url: str) -> Optional[str]:
    """Return the lower-cased host of an absolute http(s) URL, or None."""
    parts = urlsplit(raw_url.strip())
    if parts.scheme.lower() not in _ALLOWED_SCHEMES:
        return None

    hostinfo = parts.netloc.rpartition("@")[2]
    if hostinfo.startswith("["):
        host, closed, _ = hostinfo[1:].partition("]")
        if not closed:
            return None
    else:
        # A bare IPv6 literal (http://::1/) has no port separator to split on
        try:
            ipaddress.IPv6Address(hostinfo)
            host = hostinfo
        except ValueError:
            host = hostinfo.partition(":")[0]

    host = host.strip().rstrip(".").lower()
    return host or None


def _parse_ip_literal(host: str) -> Optional[IPAddress]:
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        pass
    if _LOOSE_IPV4_RE.match(host):
        try:
            return ipaddress.IPv4Address(socket.inet_aton(host))
        except OSError:
            return None
    return None


def _denial_reason(host: str) -> Optional[str]:
    if host == "localhost" or host.endswith(".localhost"):
        return "localhost"

    ip = _parse_ip_literal(host)
    if ip is None:
        return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped

    for network, reason in _DENIED_NETWORKS:
        if ip.version == network.version and ip in network:
            return reason
    return None


def admit(raw_url: Optional[str]) -> AdmissionVerdict:
    """
    Decide whether an outbound request to ``raw_url`` may be issued.

    Args:
        raw_url: URL as supplied by the caller

    Returns:
        AdmissionVerdict; ``reason`` is ``invalid-url`` for anything that is
        not an absolute http(s) URL, otherwise the matched rule name.
    """
    if not raw_url or not isinstance(raw_url, str):
        return AdmissionVerdict(False, "invalid-url")

    try:
        host = _extract_host(raw_url)
    except ValueError:
        host = None
    if host is None:
        return AdmissionVerdict(False, "invalid-url")

    reason = _denial_reason(host)
    if reason is not None:
        logger.warning("Denied outbound URL host %r (%s)", host, reason)
        return AdmissionVerdict(False, reason)
    return AdmissionVerdict(True)


def ensure_admitted(raw_url: Optional[str]) -> str:
    """Return the URL unchanged, or raise if it may not be fetched."""
    verdict = admit(raw_url)
    if verdict.allowed:
        return raw_url.strip()
    if verdict.reason == "invalid-url":
        raise InvalidInputError("Invalid URL")
    raise ForbiddenTargetError(verdict.reason or "denied")
