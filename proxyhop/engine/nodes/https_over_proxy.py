import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, List, Optional

from proxyhop.engine.context import NodeContext
from proxyhop.engine.definitions import WorkflowItem
from proxyhop.engine.error_handler import ErrorPolicyHandler
from proxyhop.engine.errors import EngineError, PaginationError
from proxyhop.engine.nodes.base import BaseNode, NodeInput, NodeOutput, NodeSchema
from proxyhop.engine.nodes.parameters import (
    batching_spec_from_parameters,
    pagination_spec_from_parameters,
    request_spec_from_parameters,
)
from proxyhop.engine.runtime.batching import aggregate_items, wait_for_batch
from proxyhop.engine.runtime.builder import RequestBuilder
from proxyhop.engine.runtime.http import RequestExecutor
from proxyhop.engine.runtime.models import RequestSpec
from proxyhop.engine.runtime.pagination import Page, PaginationDriver
from proxyhop.engine.runtime.pool import ConnectionPoolManager
from proxyhop.engine.runtime.response import InterpretedResponse, ResponseInterpreter
from proxyhop.utils.request_id import execution_scope

logger = logging.getLogger(__name__)


class HttpsOverProxyNode(BaseNode):
    """
    HTTP request node that routes through an HTTP(S) forward proxy.

    The connection pool is owned by the caller and shared by every execution
    of the node; a private pool is created when none is given.
    """

    def __init__(
        self,
        pool: Optional[ConnectionPoolManager] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.pool = pool or ConnectionPoolManager()
        self._owns_pool = pool is None
        self.executor = RequestExecutor(self.pool)
        self.sleep = sleep

    @property
    def schema(self) -> NodeSchema:
        return NodeSchema(
            name="https_over_proxy",
            label="HTTPS Over Proxy",
            type="action",
            description="Makes HTTP requests through an HTTP(S) proxy, with pagination and batching",
            category="Network",
            inputs=[
                NodeInput(
                    name="method",
                    type="options",
                    label="Method",
                    default="GET",
                    options=[{"label": m, "value": m} for m in (
                        "GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"
                    )],
                ),
                NodeInput(name="url", type="string", label="URL", required=True),
                NodeInput(
                    name="authentication",
                    type="options",
                    label="Authentication",
                    default="none",
                    options=[
                        {"label": "None", "value": "none"},
                        {"label": "Generic Credential Type", "value": "genericCredentialType"},
                        {"label": "Predefined Credential Type", "value": "predefinedCredentialType"},
                    ],
                ),
                NodeInput(name="sendQuery", type="boolean", label="Send Query Parameters", default=False),
                NodeInput(name="sendHeaders", type="boolean", label="Send Headers", default=False),
                NodeInput(name="sendBody", type="boolean", label="Send Body", default=False),
                NodeInput(
                    name="options",
                    type="collection",
                    label="Options",
                    default={},
                    description="Proxy, pool, redirect, batching, pagination and response options",
                ),
            ],
            outputs=[NodeOutput(name="main", type="item", label="Response")],
        )

    async def execute(self, context: NodeContext) -> List[WorkflowItem]:
        with execution_scope(context.execution_id):
            batching = batching_spec_from_parameters(context)
            builder = RequestBuilder(oauth1_signer=context.oauth1_signer)
            interpreter = ResponseInterpreter(context.prepare_binary_data)

            item_count = len(context.items)
            logger.info(f"Executing {context.node_name} for {item_count} item(s)")

            results: List[WorkflowItem] = []
            for item_index in range(item_count):
                await wait_for_batch(item_index, item_count, batching, self.sleep)
                results.extend(
                    await self._execute_item(context, item_index, builder, interpreter)
                )

            if batching.aggregation.enabled and len(results) > 1:
                return aggregate_items(results, batching.aggregation)
            return results

    async def _execute_item(
        self,
        context: NodeContext,
        item_index: int,
        builder: RequestBuilder,
        interpreter: ResponseInterpreter,
    ) -> List[WorkflowItem]:
        spec: Optional[RequestSpec] = None
        try:
            spec = await request_spec_from_parameters(context, item_index)
            pagination = pagination_spec_from_parameters(context, item_index)
            binary_loader = functools.partial(context.open_binary, item_index)

            async def fetch_page(request: RequestSpec) -> Page:
                resolved = builder.build(request, binary_loader)
                response = await self.executor.execute(
                    resolved,
                    never_error=request.never_error,
                    accept_status_codes=request.accept_status_codes,
                )
                output = interpreter.interpret(response, request)
                return Page(output=output, response=interpreter.pagination_context(response, output.body))

            if not pagination.enabled:
                page = await fetch_page(spec)
                return [self._to_item(page.output, item_index)]

            driver = PaginationDriver(
                pagination,
                fetch_page,
                lambda expression, extra: context.evaluate(expression, item_index, extra),
                sleep=self.sleep,
            )
            result = await driver.run(spec)
            items = [self._to_item(page.output, item_index) for page in result.pages]
            logger.info(f"Item {item_index}: fetched {len(result.pages)} page(s)")
            if result.error is None:
                return items
            if not context.continue_on_fail():
                raise PaginationError(result.error, items)
            logger.warning(f"Item {item_index}: pagination stopped early: {result.error}")
            return items + [self._error_item(result.error, spec, item_index)]

        except PaginationError:
            raise
        except EngineError as e:
            if not context.continue_on_fail():
                raise
            logger.warning(f"Item {item_index} failed ({e.code}), continuing: {e}")
            return [self._error_item(e, spec, item_index)]

    @staticmethod
    def _to_item(output: InterpretedResponse, item_index: int) -> WorkflowItem:
        return WorkflowItem(
            json=output.json, binary=output.binary, paired_item={"item": item_index}
        )

    @staticmethod
    def _error_item(
        error: EngineError, spec: Optional[RequestSpec], item_index: int
    ) -> WorkflowItem:
        record = ErrorPolicyHandler.error_record(error, spec.summary() if spec else None)
        return WorkflowItem(json=record, paired_item={"item": item_index})

    async def aclose(self) -> None:
        if self._owns_pool:
            await self.pool.aclose()
