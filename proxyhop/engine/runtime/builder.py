"""
Request builder.

Turns a RequestSpec into a fully resolved request: target URL with merged
query, layered headers, encoded body, auth flow and the pool key of the
agent that will carry it.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import IO, Any, AsyncIterator, Callable, Dict, List, Optional, Tuple, Union

import httpx

from proxyhop.config import settings
from proxyhop.engine.definitions import BinaryData
from proxyhop.engine.errors import (
    AuthenticationError,
    InvalidURLError,
    MissingRequiredFieldError,
)
from proxyhop.engine.runtime.models import (
    BasicAuth,
    BearerAuth,
    BinaryBody,
    CustomAuth,
    DigestAuth,
    FormBody,
    HeaderAuth,
    JsonBody,
    MultipartBody,
    PredefinedAuth,
    QueryAuth,
    RawBody,
    RequestSpec,
)
from proxyhop.engine.runtime.pool import AgentKey, ConnectionPoolManager
from proxyhop.engine.runtime.proxy import ProxyAddress, resolve_proxy_url
from proxyhop.engine.runtime.ssrf import check_target
from proxyhop.utils.security import basic_auth_header, strip_query

logger = logging.getLogger(__name__)

# (method, url, credentials) -> Authorization header value
OAuth1Signer = Callable[[str, str, Dict[str, Any]], str]
# binary property name -> (descriptor, readable stream)
BinaryLoader = Callable[[str], Tuple[BinaryData, IO[bytes]]]

PROXY_AUTHORIZATION = "Proxy-Authorization"


def find_header(headers: Dict[str, str], name: str) -> Optional[str]:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def remove_header(headers: Dict[str, str], name: str) -> None:
    lowered = name.lower()
    for key in [k for k in headers if k.lower() == lowered]:
        del headers[key]


def set_header(headers: Dict[str, str], name: str, value: str) -> None:
    """Set a header, replacing any existing case variant."""
    remove_header(headers, name)
    headers[name] = value


class OAuth1Auth(httpx.Auth):
    """Delegates OAuth1 signing to a host supplied signer."""

    def __init__(self, signer: OAuth1Signer, credentials: Dict[str, Any]):
        self.signer = signer
        self.credentials = credentials

    def auth_flow(self, request: httpx.Request):
        request.headers["Authorization"] = self.signer(
            request.method, str(request.url), self.credentials
        )
        yield request


async def _iter_stream(stream: IO[bytes], chunk_size: int) -> AsyncIterator[bytes]:
    try:
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        stream.close()


@dataclass
class ResolvedRequest:
    """A request ready to hand to the executor."""

    method: str
    url: str
    headers: Dict[str, str]
    agent_key: AgentKey
    timeout_ms: int
    max_redirects: int
    follow_redirects: bool
    content: Optional[Union[bytes, AsyncIterator[bytes]]] = None
    data: Optional[Dict[str, Any]] = None
    files: Optional[List[Tuple[str, Any]]] = None
    auth: Optional[httpx.Auth] = None
    proxy: Optional[ProxyAddress] = None
    allow_internal_network_access: bool = False
    # Binary streams opened for the body, closed once the exchange ends
    streams: List[IO[bytes]] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)

    @property
    def safe_url(self) -> str:
        return strip_query(self.url)

    def close_streams(self) -> None:
        for stream in self.streams:
            stream.close()

    def to_httpx(self, client: httpx.AsyncClient) -> httpx.Request:
        headers = dict(self.headers)
        if self.proxy is not None:
            # The proxy agent sends these credentials on CONNECT (or on the
            # forwarded request); they must not reach the target server.
            remove_header(headers, PROXY_AUTHORIZATION)
        return client.build_request(
            self.method,
            self.url,
            headers=headers,
            content=self.content,
            data=self.data,
            files=self.files,
        )


class RequestBuilder:
    def __init__(self, oauth1_signer: Optional[OAuth1Signer] = None):
        self.oauth1_signer = oauth1_signer

    def build(
        self, spec: RequestSpec, binary_loader: Optional[BinaryLoader] = None
    ) -> ResolvedRequest:
        check_target(spec.url, spec.allow_internal_network_access)

        proxy = self._resolve_proxy(spec)

        headers: Dict[str, str] = {}
        for name, value in spec.headers.items():
            set_header(headers, name.lower() if spec.lowercase_headers else name, str(value))
        query: Dict[str, Any] = dict(spec.query)

        auth, body_fragment = self._apply_auth(spec, headers, query)

        try:
            url = httpx.URL(spec.url)
            if query:
                url = url.copy_merge_params(query)
        except httpx.InvalidURL as e:
            raise InvalidURLError(spec.url, str(e)) from e

        streams: List[IO[bytes]] = []
        try:
            content, data, files = self._encode_body(
                spec, headers, body_fragment, binary_loader, streams
            )
        except Exception:
            for stream in streams:
                stream.close()
            raise

        if proxy is not None and proxy.username is not None:
            # Appended last so no auth layer can overwrite it
            headers[PROXY_AUTHORIZATION] = basic_auth_header(proxy.username, proxy.password or "")

        agent_key = ConnectionPoolManager.make_key(
            target_scheme=url.scheme,
            timeout_ms=spec.timeout_ms,
            pool=spec.pool,
            reject_unauthorized=not spec.allow_unauthorized_certs,
            proxy_url=proxy.url if proxy else None,
        )

        return ResolvedRequest(
            method=spec.method.value,
            url=str(url),
            headers=headers,
            agent_key=agent_key,
            timeout_ms=spec.timeout_ms,
            max_redirects=spec.effective_max_redirects,
            follow_redirects=spec.follow_redirects,
            content=content,
            data=data,
            files=files,
            auth=auth,
            proxy=proxy,
            allow_internal_network_access=spec.allow_internal_network_access,
            streams=streams,
            summary=spec.summary(),
        )

    def _resolve_proxy(self, spec: RequestSpec) -> Optional[ProxyAddress]:
        if spec.proxy is None or not spec.proxy.url.strip():
            return None
        proxy = resolve_proxy_url(spec.proxy.url)
        if spec.proxy.auth is not None and spec.proxy.auth.username:
            proxy = proxy.with_credentials(
                spec.proxy.auth.username, spec.proxy.auth.password.get_secret_value()
            )
        logger.debug(f"Routing {strip_query(spec.url)} through proxy {proxy.display}")
        return proxy

    def _apply_auth(
        self, spec: RequestSpec, headers: Dict[str, str], query: Dict[str, Any]
    ) -> Tuple[Optional[httpx.Auth], Optional[Dict[str, Any]]]:
        auth = spec.auth
        if isinstance(auth, BasicAuth):
            set_header(
                headers,
                "Authorization",
                basic_auth_header(auth.username, auth.password.get_secret_value()),
            )
        elif isinstance(auth, BearerAuth):
            set_header(headers, "Authorization", f"Bearer {auth.token.get_secret_value()}")
        elif isinstance(auth, DigestAuth):
            return httpx.DigestAuth(auth.username, auth.password.get_secret_value()), None
        elif isinstance(auth, HeaderAuth):
            set_header(headers, auth.name, auth.value.get_secret_value())
        elif isinstance(auth, QueryAuth):
            query[auth.name] = auth.value.get_secret_value()
        elif isinstance(auth, CustomAuth):
            for name, value in auth.headers.items():
                set_header(headers, name.lower() if spec.lowercase_headers else name, str(value))
            query.update(auth.query)
            return None, auth.body
        elif isinstance(auth, PredefinedAuth):
            return self._apply_predefined(auth, headers), None
        return None, None

    def _apply_predefined(
        self, auth: PredefinedAuth, headers: Dict[str, str]
    ) -> Optional[httpx.Auth]:
        creds = auth.credentials
        flow = None
        applied = False

        if creds.get("access_token"):
            set_header(headers, "Authorization", f"Bearer {creds['access_token']}")
            applied = True
        elif creds.get("oauth_token") and creds.get("oauth_token_secret"):
            if self.oauth1_signer is None:
                raise AuthenticationError(
                    f"Credential '{auth.credential_type}' requires OAuth1 signing, "
                    "but no signer is available."
                )
            flow = OAuth1Auth(self.oauth1_signer, creds)
            applied = True
        elif creds.get("apiKey"):
            header_name = creds.get("headerName") or "Authorization"
            prefix = creds.get("prefix", "Bearer")
            value = f"{prefix} {creds['apiKey']}" if prefix else str(creds["apiKey"])
            set_header(headers, header_name, value)
            applied = True
        elif creds.get("username") and creds.get("password"):
            set_header(
                headers, "Authorization", basic_auth_header(creds["username"], creds["password"])
            )
            applied = True

        custom_headers = creds.get("customHeaders")
        if isinstance(custom_headers, dict):
            for name, value in custom_headers.items():
                set_header(headers, name, str(value))
            applied = applied or bool(custom_headers)

        if not applied:
            raise AuthenticationError(
                f"Credential '{auth.credential_type}' has no usable authentication fields."
            )
        return flow

    def _encode_body(
        self,
        spec: RequestSpec,
        headers: Dict[str, str],
        body_fragment: Optional[Dict[str, Any]],
        binary_loader: Optional[BinaryLoader],
        streams: List[IO[bytes]],
    ):
        body = spec.body
        if body is None and body_fragment:
            body = JsonBody(data={})

        if body is None:
            return None, None, None

        if isinstance(body, JsonBody):
            data = body.data
            if body_fragment:
                if data is None:
                    data = {}
                if isinstance(data, dict):
                    data = {**data, **body_fragment}
                else:
                    logger.warning("Custom auth body ignored: request body is not an object")
            set_header(headers, "content-type", "application/json")
            return json.dumps(data).encode("utf-8"), None, None

        if isinstance(body, FormBody):
            fields = dict(body.fields)
            if body_fragment:
                fields.update(body_fragment)
            set_header(headers, "content-type", "application/x-www-form-urlencoded")
            return None, {k: self._form_value(v) for k, v in fields.items()}, None

        if isinstance(body, MultipartBody):
            # httpx generates the boundary
            remove_header(headers, "content-type")
            files: List[Tuple[str, Any]] = []
            for part in body.parts:
                if part.is_file:
                    meta, stream = self._load_binary(part.binary_property, binary_loader)
                    streams.append(stream)
                    files.append(
                        (
                            part.name,
                            (
                                part.filename or meta.file_name or part.name,
                                stream,
                                part.content_type or meta.mime_type or "application/octet-stream",
                            ),
                        )
                    )
                else:
                    files.append((part.name, (None, (part.value or "").encode("utf-8"))))
            return None, None, files

        if isinstance(body, BinaryBody):
            meta, stream = self._load_binary(body.binary_property, binary_loader)
            streams.append(stream)
            set_header(
                headers,
                "content-type",
                body.content_type or meta.mime_type or "application/octet-stream",
            )
            if meta.file_size is not None:
                set_header(headers, "content-length", str(meta.file_size))
            return _iter_stream(stream, settings.BINARY_CHUNK_SIZE), None, None

        if isinstance(body, RawBody):
            set_header(headers, "content-type", body.content_type)
            content = body.content
            if isinstance(content, str):
                content = content.encode("utf-8")
            return content, None, None

        return None, None, None

    @staticmethod
    def _form_value(value: Any) -> Any:
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        if value is None:
            return ""
        return value

    @staticmethod
    def _load_binary(
        property_name: Optional[str], binary_loader: Optional[BinaryLoader]
    ) -> Tuple[BinaryData, IO[bytes]]:
        if not property_name:
            raise MissingRequiredFieldError("Input binary field name must be set")
        if binary_loader is None:
            raise MissingRequiredFieldError(
                f'No binary data available for property "{property_name}"'
            )
        return binary_loader(property_name)
