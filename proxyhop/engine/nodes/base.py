from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class NodeInput(BaseModel):
    name: str
    type: str  # string, number, boolean, json, options, collection, credential
    label: str
    required: bool = False
    default: Any = None
    options: Optional[List[Dict[str, Any]]] = None  # For options type
    description: Optional[str] = None
    credential_type: Optional[str] = None


class NodeOutput(BaseModel):
    name: str
    type: str
    label: str


class NodeSchema(BaseModel):
    name: str
    label: str
    type: str  # trigger, action, logic
    description: str
    version: int = 1
    inputs: List[NodeInput]
    outputs: List[NodeOutput]
    category: str = "Common"


class BaseNode(ABC):
    @property
    @abstractmethod
    def schema(self) -> NodeSchema:
        pass

    @abstractmethod
    async def execute(self, context: Any) -> Any:
        """
        Execute the node for every input item of `context`.
        Secrets and configuration are injected via the context.
        """
        pass
