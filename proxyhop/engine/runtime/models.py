"""
Typed request, pagination and batching specs.

Host parameters are converted into these models once per item at the node
boundary; nothing below the node reads raw parameters.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Set, Union

from pydantic import BaseModel, Field, SecretStr, field_validator

from proxyhop.config import settings
from proxyhop.utils.security import strip_query


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


class ResponseFormat(str, Enum):
    AUTODETECT = "autodetect"
    JSON = "json"
    TEXT = "text"
    FILE = "file"


# --- Authentication -------------------------------------------------------


class NoAuth(BaseModel):
    type: Literal["none"] = "none"


class BasicAuth(BaseModel):
    type: Literal["basic"] = "basic"
    username: str
    password: SecretStr


class BearerAuth(BaseModel):
    type: Literal["bearer"] = "bearer"
    token: SecretStr


class DigestAuth(BaseModel):
    type: Literal["digest"] = "digest"
    username: str
    password: SecretStr


class HeaderAuth(BaseModel):
    type: Literal["header"] = "header"
    name: str
    value: SecretStr


class QueryAuth(BaseModel):
    type: Literal["query"] = "query"
    name: str
    value: SecretStr


class CustomAuth(BaseModel):
    """Headers, query parameters and a body fragment merged into the request."""

    type: Literal["custom"] = "custom"
    headers: Dict[str, str] = Field(default_factory=dict)
    query: Dict[str, Any] = Field(default_factory=dict)
    body: Optional[Dict[str, Any]] = None


class PredefinedAuth(BaseModel):
    """A stored credential whose shape decides how it is applied."""

    type: Literal["predefined"] = "predefined"
    credential_type: str
    credentials: Dict[str, Any] = Field(default_factory=dict, repr=False)


Auth = Annotated[
    Union[
        NoAuth, BasicAuth, BearerAuth, DigestAuth, HeaderAuth, QueryAuth, CustomAuth, PredefinedAuth
    ],
    Field(discriminator="type"),
]


# --- Body -----------------------------------------------------------------


class JsonBody(BaseModel):
    kind: Literal["json"] = "json"
    data: Any = None


class FormBody(BaseModel):
    kind: Literal["form"] = "form"
    fields: Dict[str, Any] = Field(default_factory=dict)


class MultipartPart(BaseModel):
    name: str
    value: Optional[str] = None
    # Name of the item binary property to stream for file parts
    binary_property: Optional[str] = None
    filename: Optional[str] = None
    content_type: Optional[str] = None

    @property
    def is_file(self) -> bool:
        return self.binary_property is not None


class MultipartBody(BaseModel):
    kind: Literal["multipart"] = "multipart"
    parts: List[MultipartPart] = Field(default_factory=list)


class BinaryBody(BaseModel):
    kind: Literal["binary"] = "binary"
    binary_property: str = "data"
    content_type: Optional[str] = None


class RawBody(BaseModel):
    kind: Literal["raw"] = "raw"
    content: Union[str, bytes] = ""
    content_type: str = "text/plain"


Body = Annotated[
    Union[JsonBody, FormBody, MultipartBody, BinaryBody, RawBody],
    Field(discriminator="kind"),
]


# --- Proxy and pool -------------------------------------------------------


class ProxyAuth(BaseModel):
    username: str
    password: SecretStr = SecretStr("")


class ProxySettings(BaseModel):
    url: str
    auth: Optional[ProxyAuth] = None


class PoolSettings(BaseModel):
    keep_alive: bool = Field(default_factory=lambda: settings.POOL_KEEP_ALIVE)
    max_sockets: int = Field(default_factory=lambda: settings.POOL_MAX_SOCKETS, ge=1)
    max_free_sockets: int = Field(default_factory=lambda: settings.POOL_MAX_FREE_SOCKETS, ge=0)


# --- Request --------------------------------------------------------------


class RequestSpec(BaseModel):
    method: HttpMethod = HttpMethod.GET
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    query: Dict[str, Any] = Field(default_factory=dict)
    body: Optional[Body] = None
    auth: Auth = Field(default_factory=NoAuth)
    proxy: Optional[ProxySettings] = None

    allow_unauthorized_certs: bool = False
    allow_internal_network_access: bool = False
    follow_redirects: bool = True
    max_redirects: int = Field(default_factory=lambda: settings.DEFAULT_MAX_REDIRECTS, ge=0)
    timeout_ms: int = Field(default_factory=lambda: settings.DEFAULT_TIMEOUT_MS, gt=0)

    never_error: bool = False
    # Status codes that are never treated as failures
    accept_status_codes: Set[int] = Field(default_factory=set)

    response_format: ResponseFormat = ResponseFormat.AUTODETECT
    output_field_name: str = Field(default_factory=lambda: settings.DEFAULT_OUTPUT_FIELD)
    full_response: bool = False
    lowercase_headers: bool = True

    pool: PoolSettings = Field(default_factory=PoolSettings)

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.upper()
        return value

    @property
    def effective_max_redirects(self) -> int:
        return self.max_redirects if self.follow_redirects else 0

    def summary(self) -> Dict[str, Any]:
        """Safe request description for error records (no credentials, no query)."""
        return {
            "url": strip_query(self.url),
            "method": self.method.value,
            "timeout": self.timeout_ms,
        }


# --- Pagination -----------------------------------------------------------


class PaginationMode(str, Enum):
    OFF = "off"
    UPDATE_PARAMETER = "update_parameter"
    NEXT_URL = "next_url"


class ParameterSlot(str, Enum):
    QUERY = "query"
    HEADER = "header"
    BODY = "body"


class CompletionPolicy(str, Enum):
    RESPONSE_IS_EMPTY = "response_is_empty"
    SPECIFIC_STATUS_CODES = "specific_status_codes"
    CUSTOM = "custom"


class PaginationParameter(BaseModel):
    slot: ParameterSlot = ParameterSlot.QUERY
    name: str = ""
    # Literal value or an expression evaluated before every request
    value: Any = ""


class PaginationSpec(BaseModel):
    mode: PaginationMode = PaginationMode.OFF
    parameters: List[PaginationParameter] = Field(default_factory=list)
    next_url: Optional[str] = None
    complete_when: CompletionPolicy = CompletionPolicy.RESPONSE_IS_EMPTY
    status_codes: Set[int] = Field(default_factory=set)
    complete_expression: Optional[str] = None
    # Maximum number of requests; int or expression evaluated per page
    page_limit: Optional[Union[int, str]] = None
    # Delay between pages in ms; int or expression evaluated per page
    interval: Union[int, str] = 0

    @property
    def enabled(self) -> bool:
        return self.mode != PaginationMode.OFF


# --- Batching -------------------------------------------------------------


class AggregationType(str, Enum):
    MERGE = "merge"
    ARRAY = "array"
    SUMMARY = "summary"


class MergeStrategy(str, Enum):
    SHALLOW = "shallow"
    DEEP = "deep"


class AggregationSpec(BaseModel):
    enabled: bool = False
    type: AggregationType = AggregationType.ARRAY
    merge_strategy: MergeStrategy = MergeStrategy.SHALLOW
    include_metadata: bool = False


class BatchingSpec(BaseModel):
    batch_size: int = 1
    batch_interval_ms: int = Field(default=0, ge=0)
    aggregation: AggregationSpec = Field(default_factory=AggregationSpec)

    def effective_size(self, item_count: int) -> int:
        """-1 means one batch with every item; 0 or less falls back to 1."""
        if self.batch_size == -1:
            return max(item_count, 1)
        if self.batch_size <= 0:
            return 1
        return self.batch_size
