"""
Error handling for outbound requests

Implements:
- Classification of httpx transport failures into engine errors
- Actionable messages for proxy, TLS and reset failures
- Continue-on-fail error records
"""

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

import httpx

from proxyhop.engine.errors import (
    ConnectionResetByPeerError,
    EngineError,
    ProxyTunnelError,
    TimedOutError,
    TLSVerificationError,
    TooManyRedirectsError,
    TransportError,
)

if TYPE_CHECKING:
    from proxyhop.engine.runtime.builder import ResolvedRequest

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    """Classification of transport failures."""
    HOST_NOT_FOUND = "host_not_found"
    CONNECTION_REFUSED = "connection_refused"
    CONNECTION_RESET = "connection_reset"
    CERTIFICATE = "certificate"
    MISSING_PORT = "missing_port"
    UNKNOWN = "unknown"


class ErrorClassifier:
    """Maps httpx exceptions onto the engine error taxonomy."""

    PATTERNS = {
        ErrorCategory.HOST_NOT_FOUND: [
            "name or service not known", "nodename nor servname", "getaddrinfo failed",
            "no address associated", "temporary failure in name resolution", "enotfound",
        ],
        ErrorCategory.CONNECTION_REFUSED: [
            "connection refused", "errno 111", "econnrefused", "actively refused",
        ],
        ErrorCategory.CONNECTION_RESET: [
            "connection reset", "econnreset", "server disconnected", "broken pipe",
            "connection aborted",
        ],
        ErrorCategory.CERTIFICATE: [
            "certificate", "certificate_verify_failed", "self signed", "self-signed",
            "hostname mismatch", "unable to get local issuer",
        ],
        ErrorCategory.MISSING_PORT: [
            "invalid port", "missing port",
        ],
    }

    # Node style error codes for transport failures not routed through a proxy
    CODES = {
        ErrorCategory.HOST_NOT_FOUND: "ENOTFOUND",
        ErrorCategory.CONNECTION_REFUSED: "ECONNREFUSED",
    }

    @staticmethod
    def _describe(error: BaseException) -> str:
        """Flatten the message of an exception and its causes."""
        parts = []
        current: Optional[BaseException] = error
        while current is not None and len(parts) < 5:
            text = str(current)
            if text and text not in parts:
                parts.append(text)
            current = current.__cause__ or current.__context__
        return " | ".join(parts) or error.__class__.__name__

    @classmethod
    def category_of(cls, error: BaseException) -> ErrorCategory:
        text = cls._describe(error).lower()
        for category, patterns in cls.PATTERNS.items():
            if any(pattern in text for pattern in patterns):
                return category
        return ErrorCategory.UNKNOWN

    @classmethod
    def classify(cls, error: Exception, request: "ResolvedRequest") -> EngineError:
        """Translate an httpx exception raised while sending `request`."""
        if isinstance(error, EngineError):
            return error

        summary = request.summary
        detail = cls._describe(error)
        proxy = request.proxy

        if isinstance(error, httpx.TooManyRedirects):
            return TooManyRedirectsError(request.max_redirects, request=summary)

        if isinstance(error, httpx.ProxyError):
            host, port = (proxy.host, proxy.port) if proxy else ("unknown", 0)
            return ProxyTunnelError(ProxyTunnelError.REJECTED, host, port, detail, request=summary)

        category = cls.category_of(error)

        if proxy is not None and isinstance(error, (httpx.ConnectError, httpx.ConnectTimeout)):
            if isinstance(error, httpx.ConnectTimeout):
                cause = ProxyTunnelError.CONNECT_TIMEOUT
            elif category == ErrorCategory.HOST_NOT_FOUND:
                cause = ProxyTunnelError.HOST_NOT_FOUND
            elif category == ErrorCategory.CONNECTION_REFUSED:
                cause = ProxyTunnelError.CONNECTION_REFUSED
            elif category == ErrorCategory.CERTIFICATE:
                return TLSVerificationError(detail, request=summary)
            else:
                cause = ProxyTunnelError.UNKNOWN
            return ProxyTunnelError(cause, proxy.host, proxy.port, detail, request=summary)

        if isinstance(error, httpx.TimeoutException):
            return TimedOutError(request.timeout_ms, request=summary)

        if category == ErrorCategory.CERTIFICATE:
            return TLSVerificationError(detail, request=summary)

        if category == ErrorCategory.CONNECTION_RESET:
            return ConnectionResetByPeerError(detail, request=summary)

        if category in cls.CODES:
            return TransportError(
                f"Could not connect to {request.safe_url}: {detail}",
                code=cls.CODES[category],
                request=summary,
            )

        if category == ErrorCategory.MISSING_PORT and proxy is not None:
            return TransportError(
                "Invalid proxy address format: missing port number. The correct format "
                'should be "myproxy:3128" or "http://myproxy:3128".',
                code="INVALID_PROXY_URL",
                request=summary,
            )

        return TransportError(
            f"Request to {request.safe_url} failed: {detail}",
            code="TRANSPORT_ERROR",
            request=summary,
        )


class ErrorPolicyHandler:
    """Handles the node's continue-on-fail policy."""

    @staticmethod
    def error_record(
        error: Exception, request: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Build the output for a failed item when continue-on-fail is enabled.

        Args:
            error: The failure
            request: Safe request summary, used when the error carries none

        Returns:
            {error, code, request?}
        """
        if isinstance(error, EngineError):
            record: Dict[str, Any] = {"error": error.message, "code": error.code}
            summary = error.request or request
        else:
            record = {"error": str(error) or error.__class__.__name__, "code": "UNKNOWN_ERROR"}
            summary = request
        if summary:
            record["request"] = dict(summary)
        return record
