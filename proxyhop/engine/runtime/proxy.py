import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, unquote, urlsplit

from proxyhop.config import settings
from proxyhop.engine.errors import InvalidProxyURLError

logger = logging.getLogger(__name__)

SUPPORTED_SCHEMES = ("http", "https")


@dataclass(frozen=True)
class ProxyAddress:
    host: str
    port: int
    scheme: str = "http"
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def netloc(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}"

    @property
    def url(self) -> str:
        """Canonical proxy URL including credentials."""
        if self.username is None:
            return f"{self.scheme}://{self.netloc}"
        userinfo = quote(self.username, safe="")
        if self.password:
            userinfo = f"{userinfo}:{quote(self.password, safe='')}"
        return f"{self.scheme}://{userinfo}@{self.netloc}"

    @property
    def display(self) -> str:
        """Proxy URL safe for logs and error messages."""
        if self.username is None:
            return f"{self.scheme}://{self.netloc}"
        return f"{self.scheme}://***@{self.netloc}"

    def with_credentials(self, username: str, password: Optional[str]) -> "ProxyAddress":
        return ProxyAddress(self.host, self.port, self.scheme, username, password)


def _parse_port(raw: str, value: str) -> int:
    if not value.isdigit():
        raise InvalidProxyURLError(raw, f"port '{value}' is not a number")
    port = int(value)
    if not 0 < port < 65536:
        raise InvalidProxyURLError(raw, f"port {port} is out of range")
    return port


def _check_host(raw: str, host: Optional[str]) -> str:
    host = (host or "").strip().strip("[]")
    if not host or any(c in host for c in "/ \t@"):
        raise InvalidProxyURLError(raw, "missing host")
    return host.lower()


def resolve_proxy_url(raw: str, default_port: Optional[int] = None) -> ProxyAddress:
    """
    Parse a proxy URL into host, port and optional credentials.

    Accepts `scheme://[user:pass@]host[:port]` and the bare `host:port` form.
    The port defaults to 8080 when a scheme is given without one.
    """
    default_port = default_port or settings.DEFAULT_PROXY_PORT
    value = (raw or "").strip()
    if not value:
        raise InvalidProxyURLError(raw or "", "empty value")

    if "://" in value:
        parts = urlsplit(value)
        scheme = parts.scheme.lower()
        if scheme not in SUPPORTED_SCHEMES:
            raise InvalidProxyURLError(value, f"unsupported scheme '{scheme}'")
        try:
            port = parts.port
        except ValueError as e:
            raise InvalidProxyURLError(value, str(e)) from e
        host = _check_host(value, parts.hostname)
        username = unquote(parts.username) if parts.username else None
        password = unquote(parts.password) if parts.password else None
        return ProxyAddress(host, port or default_port, scheme, username, password)

    # Bare host:port, optionally with user:pass@ in front
    username = password = None
    hostport = value
    if "@" in value:
        userinfo, hostport = value.rsplit("@", 1)
        name, _, secret = userinfo.partition(":")
        username = unquote(name) or None
        password = unquote(secret) or None

    host, sep, port_value = hostport.rpartition(":")
    if not sep:
        raise InvalidProxyURLError(value, "missing port number")
    if host.startswith("[") and not host.endswith("]"):
        raise InvalidProxyURLError(value, "unterminated IPv6 address")
    port = _parse_port(value, port_value)
    return ProxyAddress(_check_host(value, host), port, "http", username, password)
