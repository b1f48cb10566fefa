"""
Connection pool manager.

Transport agents are expensive to create (each owns its own connection pool
and TLS context), so they are cached by configuration and shared by every
request with the same settings. The manager is created once by the
application root and injected where needed.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx

from proxyhop.config import settings
from proxyhop.engine.runtime.models import PoolSettings
from proxyhop.utils.security import mask_secrets

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentKey:
    kind: str  # http, https or proxy
    timeout_ms: int
    keep_alive: bool
    max_sockets: int
    max_free_sockets: int
    reject_unauthorized: bool
    proxy_url: Optional[str] = None

    def __str__(self) -> str:
        parts = [
            self.kind,
            str(self.timeout_ms),
            str(self.reject_unauthorized).lower(),
            str(self.max_sockets),
            str(self.max_free_sockets),
            "keepalive" if self.keep_alive else "close",
        ]
        if self.proxy_url:
            parts.insert(1, mask_secrets(self.proxy_url))
        return "_".join(parts)


@dataclass
class PooledAgent:
    """A cached transport plus the settings it was created with."""

    key: AgentKey
    transport: httpx.AsyncHTTPTransport
    created_at: float = field(default_factory=time.monotonic)
    borrow_count: int = 0

    @property
    def timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.key.timeout_ms / 1000)


class ConnectionPoolManager:
    def __init__(self, keepalive_expiry: Optional[float] = None):
        self._agents: Dict[AgentKey, PooledAgent] = {}
        self._lock = threading.Lock()
        self._keepalive_expiry = (
            keepalive_expiry if keepalive_expiry is not None else settings.POOL_KEEPALIVE_EXPIRY
        )
        self._closed = False

    @staticmethod
    def make_key(
        *,
        target_scheme: str,
        timeout_ms: int,
        pool: PoolSettings,
        reject_unauthorized: bool,
        proxy_url: Optional[str] = None,
    ) -> AgentKey:
        if proxy_url:
            kind = "proxy"
        elif target_scheme == "https":
            kind = "https"
        else:
            kind = "http"
            # Certificate checks never apply to plain HTTP agents
            reject_unauthorized = True
        return AgentKey(
            kind=kind,
            timeout_ms=timeout_ms,
            keep_alive=pool.keep_alive,
            max_sockets=pool.max_sockets,
            max_free_sockets=pool.max_free_sockets,
            reject_unauthorized=reject_unauthorized,
            proxy_url=proxy_url,
        )

    def get_agent(self, key: AgentKey) -> PooledAgent:
        """Get the agent for `key`, creating it on first use."""
        with self._lock:
            if self._closed:
                raise RuntimeError("Connection pool manager has been closed")
            agent = self._agents.get(key)
            if agent is None:
                agent = PooledAgent(key=key, transport=self._create_transport(key))
                self._agents[key] = agent
                logger.debug(f"Created {key.kind} agent {key}")
            agent.borrow_count += 1
            return agent

    def _create_transport(self, key: AgentKey) -> httpx.AsyncHTTPTransport:
        limits = httpx.Limits(
            max_connections=key.max_sockets,
            max_keepalive_connections=key.max_free_sockets if key.keep_alive else 0,
            keepalive_expiry=self._keepalive_expiry if key.keep_alive else 0,
        )
        proxy = httpx.Proxy(key.proxy_url) if key.proxy_url else None
        return httpx.AsyncHTTPTransport(
            verify=key.reject_unauthorized,
            limits=limits,
            proxy=proxy,
            retries=0,
        )

    def keys(self) -> List[AgentKey]:
        with self._lock:
            return list(self._agents)

    def __len__(self) -> int:
        return len(self._agents)

    async def aclose(self) -> None:
        """Close every agent. Called once on application teardown."""
        with self._lock:
            agents = list(self._agents.values())
            self._agents.clear()
            self._closed = True
        for agent in agents:
            await agent.transport.aclose()
        if agents:
            logger.debug(f"Closed {len(agents)} pooled agent(s)")

    async def __aenter__(self) -> "ConnectionPoolManager":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
