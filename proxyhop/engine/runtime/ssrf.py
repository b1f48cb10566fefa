import ipaddress
import logging
import re
import socket
from typing import Union
from urllib.parse import urlsplit

from proxyhop.engine.errors import InternalNetworkBlockedError, InvalidURLError

logger = logging.getLogger(__name__)

BLOCKED_HOSTNAMES = {"localhost", "localhost.localdomain", "ip6-localhost", "ip6-loopback"}

# Shorthand IPv4 literals the system resolver accepts: 127.1, 2130706433, 0x7f000001, 0177.0.0.1
NUMERIC_HOST_PATTERN = re.compile(r"^(?:0x[0-9a-f]+|\d+)(?:\.(?:0x[0-9a-f]+|\d+)){0,3}$", re.I)

BLOCKED_NETWORKS = [
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("::/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]


def target_hostname(url: str) -> str:
    """Return the lowercased hostname of an absolute http(s) URL."""
    try:
        parts = urlsplit(url)
        # Accessing .port validates it
        parts.port
    except ValueError as e:
        raise InvalidURLError(url, str(e)) from e
    if parts.scheme.lower() not in ("http", "https"):
        raise InvalidURLError(url, "Only http and https URLs are supported.")
    if not parts.hostname:
        raise InvalidURLError(url, "The URL has no host.")
    return parts.hostname.lower()


def _as_ip(hostname: str) -> Union[ipaddress.IPv4Address, ipaddress.IPv6Address, None]:
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        if not NUMERIC_HOST_PATTERN.match(hostname):
            return None
        try:
            return ipaddress.IPv4Address(socket.inet_aton(hostname))
        except OSError:
            return None
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        return address.ipv4_mapped
    return address


def is_internal_host(hostname: str) -> bool:
    hostname = hostname.lower().strip("[]").rstrip(".")
    if hostname in BLOCKED_HOSTNAMES or hostname.endswith(".localhost"):
        return True
    address = _as_ip(hostname)
    if address is None:
        return False
    return any(address in network for network in BLOCKED_NETWORKS if network.version == address.version)


def check_target(url: str, allow_internal_network_access: bool = False) -> str:
    """
    Validate the request URL and block internal targets.

    Returns the hostname. Raises InvalidURLError for unparseable URLs and
    InternalNetworkBlockedError for loopback/private targets unless allowed.
    """
    hostname = target_hostname(url)
    if is_internal_host(hostname):
        if not allow_internal_network_access:
            raise InternalNetworkBlockedError(hostname)
        logger.debug(f"Internal network target {hostname} allowed by option")
    return hostname
