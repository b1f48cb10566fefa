import io
import logging
from typing import IO, Any, Dict, List, Optional, Tuple, Union

from proxyhop.engine.definitions import BinaryData, WorkflowItem
from proxyhop.engine.errors import AuthenticationError, MissingRequiredFieldError
from proxyhop.engine.expressions.resolver import (
    Evaluator,
    ExpressionResolver,
    evaluate_expression,
)
from proxyhop.engine.runtime.builder import OAuth1Signer
from proxyhop.engine.runtime.response import inline_binary
from proxyhop.utils.request_id import generate_execution_id

logger = logging.getLogger(__name__)

_MISSING = object()


class NodeContext:
    """
    Everything one node execution may ask of the host engine.

    Parameters, credentials, binary storage and expression evaluation all
    go through this object so the node itself stays free of host details.
    """

    def __init__(
        self,
        parameters: Dict[str, Any],
        input_items: Optional[List[Union[WorkflowItem, Dict[str, Any]]]] = None,
        credentials: Optional[Dict[str, Dict[str, Any]]] = None,
        binary_store: Optional[Dict[str, bytes]] = None,
        continue_on_fail: bool = False,
        execution_id: Optional[str] = None,
        node_name: str = "HTTPS Over Proxy",
        env: Optional[Dict[str, Any]] = None,
        evaluator: Evaluator = evaluate_expression,
        oauth1_signer: Optional[OAuth1Signer] = None,
    ):
        self.parameters = parameters
        self.items = [
            item if isinstance(item, WorkflowItem) else WorkflowItem.model_validate(item)
            for item in (input_items or [WorkflowItem()])
        ]
        self.credentials = credentials or {}
        self.binary_store = binary_store if binary_store is not None else {}
        self._continue_on_fail = continue_on_fail
        self.execution_id = execution_id or generate_execution_id()
        self.node_name = node_name
        self.env = env or {}
        self.evaluator = evaluator
        self.oauth1_signer = oauth1_signer

    # --- expressions ---------------------------------------------------------

    def resolver(self, item_index: int) -> ExpressionResolver:
        item = self.items[item_index]
        context = {
            "json": item.json_data,
            "binary": {k: v.model_dump(by_alias=True) for k, v in item.binary_data.items()},
            "itemIndex": item_index,
            "node": {"name": self.node_name},
            "input": {"all": [i.json_data for i in self.items]},
            "env": self.env,
            "execution": {"id": self.execution_id},
        }
        return ExpressionResolver(context, evaluator=self.evaluator)

    def evaluate(self, expression: Any, item_index: int, extra: Optional[Dict[str, Any]] = None) -> Any:
        """Evaluate an expression for one item, raising ExpressionError on failure."""
        return self.resolver(item_index).evaluate(expression, extra)

    # --- parameters ----------------------------------------------------------

    def get_parameter(
        self,
        name: str,
        item_index: int = 0,
        default: Any = None,
        raw_expressions: bool = False,
    ) -> Any:
        """
        Read a parameter by dotted path (e.g. `options.proxy.settings`).

        Expressions are resolved for the given item unless `raw_expressions`
        is set, in which case they are returned as written.
        """
        value: Any = self.parameters
        for part in name.split("."):
            if not isinstance(value, dict) or part not in value:
                return default
            value = value[part]
        if value is None:
            return default
        if raw_expressions:
            return value
        return self.resolver(item_index).resolve(value)

    def continue_on_fail(self) -> bool:
        return self._continue_on_fail

    # --- credentials ---------------------------------------------------------

    async def get_credentials(self, credential_type: str, item_index: int = 0) -> Dict[str, Any]:
        credentials = self.credentials.get(credential_type)
        if credentials is None:
            raise AuthenticationError(f'Credentials of type "{credential_type}" are not configured')
        return dict(credentials)

    # --- binary data ---------------------------------------------------------

    def assert_binary_data(self, item_index: int, property_name: str) -> BinaryData:
        binary = self.items[item_index].binary_data.get(property_name)
        if binary is None:
            raise MissingRequiredFieldError(
                f'No binary data property "{property_name}" exists on item {item_index}'
            )
        return binary

    def get_binary_stream(self, binary_id: str) -> IO[bytes]:
        if binary_id not in self.binary_store:
            raise MissingRequiredFieldError(f'Binary data "{binary_id}" was not found in the store')
        return io.BytesIO(self.binary_store[binary_id])

    def get_binary_metadata(self, binary_id: str) -> Dict[str, Any]:
        if binary_id not in self.binary_store:
            raise MissingRequiredFieldError(f'Binary data "{binary_id}" was not found in the store')
        return {"fileSize": len(self.binary_store[binary_id])}

    def open_binary(self, item_index: int, property_name: str) -> Tuple[BinaryData, IO[bytes]]:
        """Descriptor and readable stream for an item's binary property."""
        binary = self.assert_binary_data(item_index, property_name)
        if binary.id:
            stream = self.get_binary_stream(binary.id)
            if binary.file_size is None:
                size = self.get_binary_metadata(binary.id)["fileSize"]
                binary = binary.model_copy(update={"file_size": size})
            return binary, stream
        content = binary.content()
        if binary.file_size is None:
            binary = binary.model_copy(update={"file_size": len(content)})
        return binary, io.BytesIO(content)

    def prepare_binary_data(
        self, content: bytes, file_name: Optional[str] = None, mime_type: Optional[str] = None
    ) -> BinaryData:
        return inline_binary(content, file_name, mime_type)
