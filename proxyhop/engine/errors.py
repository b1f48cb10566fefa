from typing import Any, Dict, List, Optional


class EngineError(Exception):
    """Base class for all engine errors."""

    code = "UNKNOWN_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        request: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        # Safe request summary (url, method, timeout) for error records
        self.request = request

    def __str__(self) -> str:
        return self.message


class InvalidProxyURLError(EngineError):
    """Raised when a proxy URL cannot be parsed into host and port."""

    code = "INVALID_PROXY_URL"

    def __init__(self, proxy_url: str, reason: Optional[str] = None):
        message = (
            f"Invalid proxy URL format: {proxy_url}. The correct format should be "
            "http://myproxy:3128 or myproxy:3128"
        )
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.proxy_url = proxy_url


class InternalNetworkBlockedError(EngineError):
    """Raised when the target resolves to a loopback or private address."""

    code = "INTERNAL_NETWORK_BLOCKED"

    def __init__(self, hostname: str):
        super().__init__(
            f'Security restriction: Access to internal network address "{hostname}" '
            'is not allowed. If you need to access internal networks, please enable '
            '"Allow Internal Network Access" in the options.'
        )
        self.hostname = hostname


class InvalidURLError(EngineError):
    """Raised when the request URL does not parse as an absolute http(s) URL."""

    code = "INVALID_URL"

    def __init__(self, url: str, reason: Optional[str] = None):
        message = f'Invalid URL: "{url}".'
        if reason:
            message = f"{message} {reason}"
        super().__init__(message)
        self.url = url


class InvalidJSONError(EngineError):
    """Raised when a JSON parameter (headers, query, body, custom auth) is malformed."""

    code = "INVALID_JSON"

    def __init__(self, field: str, detail: Optional[str] = None):
        message = f"{field} must be a valid JSON object"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.field = field


class InvalidJSONResponseError(EngineError):
    code = "INVALID_JSON_RESPONSE"

    def __init__(self, detail: Optional[str] = None):
        message = (
            'Response is not valid JSON. Try using "Auto-detect" or "Text" response format.'
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class TimedOutError(EngineError):
    """Raised when the hard per-request timeout fires."""

    code = "TIMEOUT"

    def __init__(self, timeout_ms: int, request: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Request canceled due to timeout ({timeout_ms}ms). This was triggered by "
            "the node's timeout setting. If you need more time to complete the request, "
            "please increase the timeout value.",
            request=request,
        )
        self.timeout_ms = timeout_ms


class ProxyTunnelError(EngineError):
    """Raised when the proxy itself cannot be reached or refuses the tunnel."""

    code = "PROXY_ERROR"

    HOST_NOT_FOUND = "host_not_found"
    CONNECTION_REFUSED = "connection_refused"
    CONNECT_TIMEOUT = "connect_timeout"
    REJECTED = "rejected"
    UNKNOWN = "unknown"

    CODES = {
        HOST_NOT_FOUND: "ENOTFOUND",
        CONNECTION_REFUSED: "ECONNREFUSED",
        CONNECT_TIMEOUT: "ETIMEDOUT",
        REJECTED: "PROXY_REJECTED",
        UNKNOWN: "PROXY_ERROR",
    }

    def __init__(
        self,
        cause: str,
        host: str,
        port: int,
        detail: Optional[str] = None,
        request: Optional[Dict[str, Any]] = None,
    ):
        if cause == self.HOST_NOT_FOUND:
            message = (
                f'Unable to connect to proxy server: host "{host}" not found. '
                "Please verify the proxy hostname is correct."
            )
        elif cause == self.CONNECTION_REFUSED:
            message = (
                f"Proxy server connection refused: {host}:{port}. "
                "Please verify the proxy server is running and the port is correct."
            )
        elif cause == self.CONNECT_TIMEOUT:
            message = (
                f"Proxy server connection timeout: {host}:{port}. "
                "Please verify the proxy server is reachable."
            )
        elif cause == self.REJECTED:
            message = (
                f"Proxy server {host}:{port} rejected the tunnel request. "
                "Please verify the proxy credentials and that the target is allowed."
            )
        else:
            message = f"Proxy error while connecting through {host}:{port}."
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, code=self.CODES.get(cause, "PROXY_ERROR"), request=request)
        self.cause = cause
        self.host = host
        self.port = port


class TLSVerificationError(EngineError):
    code = "CERT_ERROR"

    def __init__(self, detail: str, request: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"SSL certificate error: {detail}\n\n[SOLUTION] Please enable the "
            '"Ignore SSL Issues (Insecure)" option if you trust this server.',
            request=request,
        )


class ConnectionResetByPeerError(EngineError):
    code = "ECONNRESET"

    def __init__(self, detail: Optional[str] = None, request: Optional[Dict[str, Any]] = None):
        message = (
            "Connection reset: The server may have closed the connection. "
            "Please check the target and proxy server status."
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, request=request)


class TooManyRedirectsError(EngineError):
    code = "TOO_MANY_REDIRECTS"

    def __init__(self, max_redirects: int, request: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Maximum number of redirects exceeded ({max_redirects}).",
            request=request,
        )
        self.max_redirects = max_redirects


class MissingRequiredFieldError(EngineError):
    """Raised when a required parameter is missing or empty."""

    code = "MISSING_REQUIRED_FIELD"


class HTTPStatusError(EngineError):
    """Raised for responses with status >= 400 when errors are not suppressed."""

    code = "HTTP_ERROR"

    def __init__(
        self,
        status_code: int,
        reason: str,
        body: Any = None,
        request: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            f"Request failed with status code {status_code} {reason}".rstrip(),
            code=str(status_code),
            request=request,
        )
        self.status_code = status_code
        self.body = body


class AuthenticationError(EngineError):
    """Raised when credentials are missing or cannot be applied."""

    code = "AUTHENTICATION_ERROR"


class ExpressionError(EngineError):
    """Raised when an expression fails to evaluate."""

    code = "EXPRESSION_ERROR"

    def __init__(self, expression: str, detail: str):
        super().__init__(f"Expression '{expression}' could not be evaluated: {detail}")
        self.expression = expression


class TransportError(EngineError):
    """Raised for transport failures that match no more specific category."""

    code = "TRANSPORT_ERROR"


class PaginationError(EngineError):
    """Raised when a page request fails; carries the pages fetched before the failure."""

    def __init__(self, error: EngineError, pages: List[Any]):
        super().__init__(
            f"Pagination stopped after {len(pages)} page(s): {error.message}",
            code=error.code,
            request=error.request,
        )
        self.error = error
        self.pages = pages


class InvalidParameterError(EngineError):
    """Raised when a node parameter has a value of the wrong shape."""

    code = "INVALID_PARAMETER"
