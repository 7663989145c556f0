# linkguard/services/hostname_guard.py
import ipaddress
import logging
import re
import socket
from typing import Iterable, Optional, Union
from urllib.parse import urlparse

import idna

from ..config import GuardMode

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

BLOCKED_HOSTNAMES = frozenset({
    'localhost',
    'localhost.localdomain',
    'local',
    'ip6-localhost',
    'ip6-loopback',
})

BLOCKED_DOMAIN_SUFFIXES = (
    '.local',
    '.localhost',
    '.localdomain',
    '.internal',
    '.intranet',
    '.corp',
    '.home',
    '.lan',
    '.private',
)

# Cloud metadata services (AWS/GCP/Azure, ECS task metadata, EC2 IPv6, Alibaba)
METADATA_ENDPOINTS = frozenset({
    '169.254.169.254',
    '169.254.170.2',
    'fd00:ec2::254',
    '100.100.100.200',
    'metadata.google.internal',
    'metadata.goog',
})

BLOCKED_IPV4_NETWORKS = tuple(ipaddress.ip_network(net) for net in (
    '0.0.0.0/8',           # "this network", includes 0.0.0.0
    '10.0.0.0/8',
    '100.64.0.0/10',       # carrier-grade NAT
    '127.0.0.0/8',
    '169.254.0.0/16',
    '172.16.0.0/12',
    '192.168.0.0/16',
    '255.255.255.255/32',
))

BLOCKED_IPV6_NETWORKS = tuple(ipaddress.ip_network(net) for net in (
    '::1/128',
    '::/96',               # unspecified and IPv4-compatible
    'fe80::/10',
    'fc00::/7',
))

# Non-HTTP services commonly exposed on internal hosts
BLOCKED_PORTS = frozenset({22, 23, 25, 3306, 5432, 6379, 27017, 9200, 11211})

# Shorthand IPv4 forms the resolver accepts: 127.1, 2130706433, 0x7f.0.0.1
_LOOSE_IPV4 = re.compile(r'^(0x[0-9a-f]+|\d+)(\.(0x[0-9a-f]+|\d+)){0,3}$')


def normalize_hostname(hostname: Optional[str]) -> Optional[str]:
    """
    Canonical lowercase ASCII form of a hostname, or None if it cannot be
    normalized. Brackets around IPv6 literals and trailing dots are removed.
    """
    host = (hostname or '').strip()
    if host.startswith('[') and host.endswith(']'):
        host = host[1:-1]
    host = host.rstrip('.').lower()
    if not host:
        return None

    if ':' in host:
        return host

    if host.isascii():
        return host

    try:
        ascii_host = idna.encode(host, uts46=True).decode('ascii')
    except idna.IDNAError as e:
        logger.info(f"Rejecting hostname that fails IDNA normalization: {e}")
        return None
    return ascii_host.rstrip('.').lower() or None


def parse_ip(host: str) -> Optional[IPAddress]:
    """Parse an IP literal, including the shorthand IPv4 forms resolvers accept"""
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        pass

    if _LOOSE_IPV4.match(host):
        try:
            return ipaddress.IPv4Address(socket.inet_aton(host))
        except OSError:
            return None
    return None


class HostnameGuard:
    """
    Decides whether an outbound request target is reachable inside the
    private network.

    Two exclusive policies:
    - deny-list (default): public internet allowed, internal ranges,
      internal hostnames, metadata endpoints and service ports denied
    - allow-list: only the enumerated hostnames (and their subdomains) pass

    Service ports are denied under both policies.
    """

    def __init__(self, mode: GuardMode = GuardMode.DENY_LIST, allowed_hosts: Iterable[str] = ()):
        self.mode = mode
        self.allowed_hosts = tuple(
            host for host in (normalize_hostname(h.lstrip('.')) for h in allowed_hosts) if host
        )
        if self.mode is GuardMode.ALLOW_LIST and not self.allowed_hosts:
            logger.warning("Allow-list fetch mode is active with an empty allow-list; every host is denied")

    def is_blocked(self, hostname: Optional[str], port: Union[int, str, None] = None) -> bool:
        host = normalize_hostname(hostname)
        if host is None:
            return True

        if self._is_blocked_port(port):
            return True

        if self.mode is GuardMode.ALLOW_LIST:
            return not self._is_allowed(host)

        if host in BLOCKED_HOSTNAMES or host in METADATA_ENDPOINTS:
            return True

        if any(host.endswith(suffix) for suffix in BLOCKED_DOMAIN_SUFFIXES):
            return True

        ip = parse_ip(host)
        if ip is not None:
            return self._is_internal_address(ip)

        # Colon-bearing names are IPv6 literals; one we cannot parse is denied
        if ':' in host:
            return True

        return False

    def is_blocked_url(self, url: str) -> bool:
        try:
            parsed = urlparse(url)
            port = parsed.port
        except ValueError:
            return True
        if not parsed.hostname:
            return True
        return self.is_blocked(parsed.hostname, port)

    def is_blocked_address(self, address: Union[str, IPAddress]) -> bool:
        """Check an address a hostname resolved to"""
        if self.mode is GuardMode.ALLOW_LIST:
            return False
        if isinstance(address, str):
            ip = parse_ip(address.split('%', 1)[0])
            if ip is None:
                return True
        else:
            ip = address
        return self._is_internal_address(ip)

    def _is_allowed(self, host: str) -> bool:
        return any(host == allowed or host.endswith('.' + allowed) for allowed in self.allowed_hosts)

    def _is_blocked_port(self, port: Union[int, str, None]) -> bool:
        if port is None or port == '':
            return False
        try:
            return int(port) in BLOCKED_PORTS
        except (TypeError, ValueError):
            return True

    def _is_internal_address(self, ip: IPAddress) -> bool:
        if isinstance(ip, ipaddress.IPv6Address):
            if ip.ipv4_mapped is not None:
                return self._is_internal_address(ip.ipv4_mapped)
            if str(ip) in METADATA_ENDPOINTS:
                return True
            return any(ip in network for network in BLOCKED_IPV6_NETWORKS)

        if str(ip) in METADATA_ENDPOINTS:
            return True
        return any(ip in network for network in BLOCKED_IPV4_NETWORKS)
