"""
Pagination loop.

Each page is built, sent and interpreted before the next one is prepared,
since later pages may depend on earlier response data.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from proxyhop.engine.errors import EngineError, ExpressionError, MissingRequiredFieldError
from proxyhop.engine.expressions.resolver import is_expression
from proxyhop.engine.runtime.models import (
    CompletionPolicy,
    JsonBody,
    PaginationMode,
    PaginationSpec,
    ParameterSlot,
    RequestSpec,
)
from proxyhop.engine.runtime.response import InterpretedResponse

logger = logging.getLogger(__name__)


@dataclass
class Page:
    output: InterpretedResponse
    # `$response` as seen by expressions: statusCode, headers, body, ...
    response: Dict[str, Any]


@dataclass
class PaginationResult:
    pages: List[Page] = field(default_factory=list)
    # Set when a page failed; pages fetched before the failure are kept
    error: Optional[EngineError] = None

    @property
    def complete(self) -> bool:
        return self.error is None


FetchPage = Callable[[RequestSpec], Awaitable[Page]]
# (expression, extra variables) -> value
Evaluate = Callable[[Any, Dict[str, Any]], Any]


def is_empty_body(body: Any) -> bool:
    """
    A body counts as empty when it is falsy, or when it is an object whose
    collection values (e.g. `items`, `results`) are all empty.
    """
    if not body:
        return True
    if isinstance(body, dict):
        collections = [v for v in body.values() if isinstance(v, (list, dict))]
        return bool(collections) and all(len(v) == 0 for v in collections)
    return False


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("", "false", "0", "none", "null")
    return bool(value)


class PaginationDriver:
    def __init__(
        self,
        spec: PaginationSpec,
        fetch_page: FetchPage,
        evaluate: Evaluate,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.spec = spec
        self.fetch_page = fetch_page
        self.evaluate = evaluate
        self.sleep = sleep

    @staticmethod
    def validate(spec: PaginationSpec) -> None:
        """Fail fast on settings that would loop forever."""
        if spec.mode == PaginationMode.UPDATE_PARAMETER:
            params = spec.parameters
            if not params or all(p.name == "" and p.value in ("", None) for p in params):
                raise MissingRequiredFieldError(
                    "At least one entry with 'Name' and 'Value' filled must be included in "
                    "'Parameters' to use 'Update a Parameter in Each Request' mode"
                )
            for index, param in enumerate(params, start=1):
                if not param.name:
                    raise MissingRequiredFieldError(
                        f"Parameter name must be set for parameter [{index}] in pagination settings"
                    )
                if param.value in ("", None):
                    raise MissingRequiredFieldError(
                        f"Some value must be provided for parameter [{index}] in pagination "
                        "settings, omitting it will result in an infinite loop"
                    )
        elif spec.mode == PaginationMode.NEXT_URL and not (spec.next_url or "").strip():
            raise MissingRequiredFieldError(
                "Next URL must be set to use 'Response Contains Next URL' mode"
            )

        if spec.complete_when == CompletionPolicy.SPECIFIC_STATUS_CODES and not spec.status_codes:
            raise MissingRequiredFieldError(
                "At least one status code must be set to complete pagination on specific status codes"
            )
        if spec.complete_when == CompletionPolicy.CUSTOM and not (spec.complete_expression or "").strip():
            raise MissingRequiredFieldError(
                "Complete expression must be set to complete pagination on a custom condition"
            )

    async def run(self, request: RequestSpec) -> PaginationResult:
        self.validate(self.spec)
        spec = self.spec

        base = request
        if spec.complete_when == CompletionPolicy.SPECIFIC_STATUS_CODES:
            # Completion codes end the loop, they are not failures
            base = request.model_copy(
                update={"accept_status_codes": set(request.accept_status_codes) | spec.status_codes}
            )

        result = PaginationResult()
        response: Dict[str, Any] = {}
        page_count = 0
        current = base

        while True:
            variables = self._variables(response, page_count, current)
            try:
                limit = self._page_limit(variables)
                if limit is not None and page_count >= limit:
                    logger.debug(f"Page limit {limit} reached")
                    break
                if spec.mode == PaginationMode.UPDATE_PARAMETER:
                    current = self._apply_parameters(base if page_count == 0 else current, variables)
                elif spec.mode == PaginationMode.NEXT_URL and page_count > 0:
                    next_url = self.evaluate(spec.next_url, variables)
                    if not next_url:
                        logger.debug(f"No next URL after page {page_count}, stopping")
                        break
                    current = base.model_copy(update={"url": str(next_url), "query": {}})

                logger.debug(f"Fetching page {page_count + 1}")
                page = await self.fetch_page(current)
            except EngineError as e:
                result.error = e
                return result

            result.pages.append(page)
            page_count += 1
            response = page.response
            variables = self._variables(response, page_count, current)

            try:
                if self._is_complete(page, variables):
                    logger.debug(f"Pagination complete after {page_count} page(s)")
                    break
                limit = self._page_limit(variables)
                if limit is not None and page_count >= limit:
                    logger.debug(f"Page limit {limit} reached")
                    break
                delay_ms = self._interval(variables)
            except EngineError as e:
                result.error = e
                return result

            if delay_ms > 0:
                await self.sleep(delay_ms / 1000)

        return result

    @staticmethod
    def _variables(response: Dict[str, Any], page_count: int, request: RequestSpec) -> Dict[str, Any]:
        return {
            "response": response,
            "pageCount": page_count,
            "request": {
                "url": request.url,
                "method": request.method.value,
                "headers": dict(request.headers),
                "query": dict(request.query),
                "body": request.body.data if isinstance(request.body, JsonBody) else None,
            },
        }

    def _resolve(self, value: Any, variables: Dict[str, Any]) -> Any:
        if is_expression(value):
            return self.evaluate(value, variables)
        return value

    def _apply_parameters(self, request: RequestSpec, variables: Dict[str, Any]) -> RequestSpec:
        headers = dict(request.headers)
        query = dict(request.query)
        body = request.body
        body_updates: Dict[str, Any] = {}

        for param in self.spec.parameters:
            value = self._resolve(param.value, variables)
            # A value that resolves to nothing (e.g. no cursor before the
            # first page) removes the parameter
            if param.slot == ParameterSlot.QUERY:
                if value is None:
                    query.pop(param.name, None)
                else:
                    query[param.name] = value
            elif param.slot == ParameterSlot.HEADER:
                for key in [k for k in headers if k.lower() == param.name.lower()]:
                    del headers[key]
                if value is not None:
                    headers[param.name] = str(value)
            else:
                body_updates[param.name] = value

        if body_updates:
            if body is None:
                body = JsonBody(data=body_updates)
            elif isinstance(body, JsonBody) and isinstance(body.data, (dict, type(None))):
                body = JsonBody(data={**(body.data or {}), **body_updates})
            else:
                raise MissingRequiredFieldError(
                    "Body pagination parameters require a JSON object body"
                )

        return request.model_copy(update={"headers": headers, "query": query, "body": body})

    def _is_complete(self, page: Page, variables: Dict[str, Any]) -> bool:
        policy = self.spec.complete_when
        if policy == CompletionPolicy.RESPONSE_IS_EMPTY:
            return is_empty_body(page.response.get("body"))
        if policy == CompletionPolicy.SPECIFIC_STATUS_CODES:
            return page.response.get("statusCode") in self.spec.status_codes
        expression = self.spec.complete_expression
        if not is_expression(expression):
            # Completion conditions are always expressions, braces optional
            expression = f"={expression}"
        return _truthy(self.evaluate(expression, variables))

    def _page_limit(self, variables: Dict[str, Any]) -> Optional[int]:
        if self.spec.page_limit is None or self.spec.page_limit == "":
            return None
        value = self._resolve(self.spec.page_limit, variables)
        return self._as_int(value, self.spec.page_limit, "page limit")

    def _interval(self, variables: Dict[str, Any]) -> int:
        value = self._resolve(self.spec.interval, variables)
        return max(self._as_int(value, self.spec.interval, "interval") or 0, 0)

    @staticmethod
    def _as_int(value: Any, expression: Any, label: str) -> Optional[int]:
        if value is None or value == "":
            return None
        try:
            return int(float(value))
        except (TypeError, ValueError) as e:
            raise ExpressionError(str(expression), f"{label} must be a number, got {value!r}") from e
