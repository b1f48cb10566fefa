"""
Adapter from host parameters to typed specs.

Every parameter is read from exactly one canonical path. Missing optional
parameters fall back to defaults; malformed ones raise engine errors.
"""

import json
from typing import Any, Dict, List, Optional, Set

from pydantic import ValidationError

from proxyhop.config import settings
from proxyhop.engine.context import NodeContext
from proxyhop.engine.errors import (
    AuthenticationError,
    InvalidJSONError,
    InvalidParameterError,
    MissingRequiredFieldError,
)
from proxyhop.engine.runtime.models import (
    AggregationSpec,
    BasicAuth,
    BatchingSpec,
    BearerAuth,
    BinaryBody,
    CompletionPolicy,
    CustomAuth,
    DigestAuth,
    FormBody,
    HeaderAuth,
    JsonBody,
    MultipartBody,
    MultipartPart,
    NoAuth,
    PaginationMode,
    PaginationParameter,
    PaginationSpec,
    ParameterSlot,
    PoolSettings,
    PredefinedAuth,
    ProxyAuth,
    ProxySettings,
    QueryAuth,
    RawBody,
    RequestSpec,
)

PAGINATION_MODES = {
    "off": PaginationMode.OFF,
    "updateAParameterInEachRequest": PaginationMode.UPDATE_PARAMETER,
    "responseContainsNextURL": PaginationMode.NEXT_URL,
}

PARAMETER_SLOTS = {
    "qs": ParameterSlot.QUERY,
    "headers": ParameterSlot.HEADER,
    "body": ParameterSlot.BODY,
}

COMPLETION_POLICIES = {
    "responseIsEmpty": CompletionPolicy.RESPONSE_IS_EMPTY,
    "receiveSpecificStatusCodes": CompletionPolicy.SPECIFIC_STATUS_CODES,
    "other": CompletionPolicy.CUSTOM,
}

DEFAULT_MAX_REQUESTS = 100


def parse_json_object(value: Any, field: str) -> Dict[str, Any]:
    """Accept a dict or a JSON string encoding one."""
    if isinstance(value, dict):
        return value
    if value in (None, ""):
        return {}
    try:
        parsed = json.loads(value) if isinstance(value, str) else value
    except json.JSONDecodeError as e:
        raise InvalidJSONError(field, str(e)) from e
    if not isinstance(parsed, dict):
        raise InvalidJSONError(field)
    return parsed


def _pairs(entries: Optional[List[Dict[str, Any]]]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for entry in entries or []:
        name = entry.get("name")
        if name:
            result[name] = entry.get("value", "")
    return result


def _key_value_section(
    context: NodeContext, item_index: int, prefix: str, collection: str, json_field: str, label: str
) -> Dict[str, Any]:
    if not context.get_parameter(f"send{prefix}", item_index, False):
        return {}
    mode = context.get_parameter(f"specify{prefix}", item_index, "keypair")
    if mode == "json":
        return parse_json_object(context.get_parameter(json_field, item_index), label)
    return _pairs(context.get_parameter(f"{collection}.parameters", item_index, []))


def _body(context: NodeContext, item_index: int):
    if not context.get_parameter("sendBody", item_index, False):
        return None

    content_type = context.get_parameter("contentType", item_index, "json")
    specify = context.get_parameter("specifyBody", item_index, "keypair")
    entries = context.get_parameter("bodyParameters.parameters", item_index, [])

    if content_type == "json":
        if specify == "json":
            raw = context.get_parameter("bodyParametersJson", item_index, "")
            if isinstance(raw, str):
                try:
                    return JsonBody(data=json.loads(raw) if raw.strip() else {})
                except json.JSONDecodeError as e:
                    raise InvalidJSONError("Body (JSON)", str(e)) from e
            return JsonBody(data=raw)
        return JsonBody(data=_pairs(entries))

    if content_type == "form-urlencoded":
        if specify == "json":
            return FormBody(
                fields=parse_json_object(
                    context.get_parameter("bodyParametersJson", item_index), "Body (JSON)"
                )
            )
        return FormBody(fields=_pairs(entries))

    if content_type == "multipart-form-data":
        parts = []
        for entry in entries or []:
            if not entry.get("name"):
                continue
            if entry.get("parameterType") == "formBinaryData":
                property_name = entry.get("inputDataFieldName")
                if not property_name:
                    raise MissingRequiredFieldError(
                        f"Input data field name must be set for form field \"{entry['name']}\""
                    )
                parts.append(MultipartPart(name=entry["name"], binary_property=property_name))
            else:
                value = entry.get("value", "")
                if not isinstance(value, str):
                    value = json.dumps(value)
                parts.append(MultipartPart(name=entry["name"], value=value))
        return MultipartBody(parts=parts)

    if content_type == "binaryData":
        return BinaryBody(
            binary_property=context.get_parameter("inputDataFieldName", item_index, "data")
        )

    if content_type == "raw":
        return RawBody(
            content=context.get_parameter("body", item_index, ""),
            content_type=context.get_parameter("rawContentType", item_index, "text/plain"),
        )

    raise InvalidParameterError(f'Unsupported body content type "{content_type}"')


async def _auth(context: NodeContext, item_index: int):
    authentication = context.get_parameter("authentication", item_index, "none")
    if authentication == "none":
        return NoAuth()

    if authentication == "predefinedCredentialType":
        credential_type = context.get_parameter("nodeCredentialType", item_index)
        if not credential_type:
            raise MissingRequiredFieldError("Credential type must be set")
        credentials = await context.get_credentials(credential_type, item_index)
        return PredefinedAuth(credential_type=credential_type, credentials=credentials)

    if authentication != "genericCredentialType":
        raise InvalidParameterError(f'Unsupported authentication "{authentication}"')

    auth_type = context.get_parameter("genericAuthType", item_index)
    if not auth_type:
        raise MissingRequiredFieldError("Generic auth type must be set")
    creds = await context.get_credentials(auth_type, item_index)

    if auth_type == "httpBasicAuth":
        return BasicAuth(username=creds.get("user", ""), password=creds.get("password", ""))
    if auth_type == "httpBearerAuth":
        return BearerAuth(token=creds.get("token", ""))
    if auth_type == "httpDigestAuth":
        return DigestAuth(username=creds.get("user", ""), password=creds.get("password", ""))
    if auth_type == "httpHeaderAuth":
        return HeaderAuth(name=creds.get("name", ""), value=creds.get("value", ""))
    if auth_type == "httpQueryAuth":
        return QueryAuth(name=creds.get("name", ""), value=creds.get("value", ""))
    if auth_type == "httpCustomAuth":
        try:
            custom = parse_json_object(creds.get("json"), "Custom Auth JSON")
        except InvalidJSONError as e:
            raise AuthenticationError("Invalid Custom Auth JSON configuration") from e
        return CustomAuth(
            headers={k: str(v) for k, v in (custom.get("headers") or {}).items()},
            query=custom.get("qs") or {},
            body=custom.get("body") or None,
        )
    raise AuthenticationError(f'Unsupported generic auth type "{auth_type}"')


def _proxy(options: Dict[str, Any]) -> Optional[ProxySettings]:
    proxy = (options.get("proxy") or {}).get("settings") or {}
    url = (proxy.get("proxyUrl") or "").strip()
    if not url:
        return None
    auth = None
    if proxy.get("proxyAuth") and proxy.get("proxyUsername"):
        auth = ProxyAuth(
            username=proxy["proxyUsername"], password=proxy.get("proxyPassword") or ""
        )
    return ProxySettings(url=url, auth=auth)


def _pool(options: Dict[str, Any]) -> PoolSettings:
    pool = (options.get("connectionPool") or {}).get("settings") or {}
    return PoolSettings(
        keep_alive=pool.get("keepAlive", settings.POOL_KEEP_ALIVE),
        max_sockets=pool.get("maxSockets", settings.POOL_MAX_SOCKETS),
        max_free_sockets=pool.get("maxFreeSockets", settings.POOL_MAX_FREE_SOCKETS),
    )


async def request_spec_from_parameters(context: NodeContext, item_index: int) -> RequestSpec:
    url = context.get_parameter("url", item_index, "")
    if not isinstance(url, str) or not url.strip():
        raise MissingRequiredFieldError("URL must be set")

    # Pagination settings are evaluated per page, not here
    raw_options = context.get_parameter("options", item_index, {}, raw_expressions=True)
    options = {
        key: context.get_parameter(f"options.{key}", item_index)
        for key in raw_options
        if key != "pagination"
    }
    redirect = (options.get("redirect") or {}).get("redirect") or {}

    try:
        return RequestSpec(
            method=context.get_parameter("method", item_index, "GET"),
            url=url.strip(),
            headers={
                k: str(v)
                for k, v in _key_value_section(
                    context, item_index, "Headers", "headerParameters", "headersJson", "Headers (JSON)"
                ).items()
            },
            query=_key_value_section(
                context, item_index, "Query", "queryParameters", "queryParametersJson",
                "Query Parameters (JSON)",
            ),
            body=_body(context, item_index),
            auth=await _auth(context, item_index),
            proxy=_proxy(options),
            allow_unauthorized_certs=options.get("allowUnauthorizedCerts", False),
            allow_internal_network_access=options.get("allowInternalNetworkAccess", False),
            follow_redirects=redirect.get("followRedirects", True),
            max_redirects=redirect.get("maxRedirects", settings.DEFAULT_MAX_REDIRECTS),
            timeout_ms=options.get("timeout") or settings.DEFAULT_TIMEOUT_MS,
            never_error=options.get("neverError", False),
            response_format=options.get("responseFormat") or "autodetect",
            output_field_name=options.get("outputFieldName") or settings.DEFAULT_OUTPUT_FIELD,
            full_response=options.get("fullResponse", False),
            lowercase_headers=options.get("lowercaseHeaders", True),
            pool=_pool(options),
        )
    except ValidationError as e:
        raise InvalidParameterError(f"Invalid request parameters: {e}") from e


def _status_codes(value: Any) -> Set[int]:
    if isinstance(value, (list, set, tuple)):
        raw = list(value)
    else:
        raw = [part for part in str(value or "").split(",") if part.strip()]
    codes = set()
    for part in raw:
        try:
            codes.add(int(str(part).strip()))
        except ValueError as e:
            raise InvalidParameterError(f'Invalid status code "{part}" in pagination settings') from e
    return codes


def pagination_spec_from_parameters(context: NodeContext, item_index: int) -> PaginationSpec:
    """Pagination settings keep their expressions unresolved; they are evaluated per page."""
    raw = context.get_parameter(
        "options.pagination.pagination", item_index, {}, raw_expressions=True
    )
    mode = PAGINATION_MODES.get(raw.get("paginationMode", "off"))
    if mode is None:
        raise InvalidParameterError(f'Unsupported pagination mode "{raw.get("paginationMode")}"')
    if mode == PaginationMode.OFF:
        return PaginationSpec()

    parameters = [
        PaginationParameter(
            slot=PARAMETER_SLOTS.get(entry.get("type", "qs"), ParameterSlot.QUERY),
            name=entry.get("name", ""),
            value=entry.get("value", ""),
        )
        for entry in (raw.get("parameters") or {}).get("parameters", [])
    ]
    complete_when = COMPLETION_POLICIES.get(raw.get("paginationCompleteWhen", "responseIsEmpty"))
    if complete_when is None:
        raise InvalidParameterError(
            f'Unsupported pagination completion "{raw.get("paginationCompleteWhen")}"'
        )

    page_limit = None
    if raw.get("limitPagesFetched"):
        page_limit = raw.get("maxRequests", DEFAULT_MAX_REQUESTS)

    return PaginationSpec(
        mode=mode,
        parameters=parameters,
        next_url=raw.get("nextURL"),
        complete_when=complete_when,
        status_codes=_status_codes(raw.get("statusCodesWhenComplete")),
        complete_expression=raw.get("completeExpression"),
        page_limit=page_limit,
        interval=raw.get("requestInterval", 0) or 0,
    )


def batching_spec_from_parameters(context: NodeContext) -> BatchingSpec:
    batch = context.get_parameter("options.batching.batch", 0, {})
    aggregation = context.get_parameter("options.batchAggregation", 0, {})
    try:
        return BatchingSpec(
            batch_size=batch.get("batchSize", 1) or 1,
            batch_interval_ms=batch.get("batchInterval", 0) or 0,
            aggregation=AggregationSpec(
                enabled=aggregation.get("enabled", False),
                type=aggregation.get("aggregationType", "array"),
                merge_strategy=aggregation.get("mergeStrategy", "shallow"),
                include_metadata=aggregation.get("includeMetadata", False),
            ),
        )
    except ValidationError as e:
        raise InvalidParameterError(f"Invalid batching parameters: {e}") from e
