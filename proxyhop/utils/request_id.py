"""
Execution ID tracking for log correlation.

Every node execution gets a unique ID which:
1. Is stored in a context variable so it follows the asyncio task
2. Is prefixed to every log message by the CompactFilter
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

# Context variable for execution ID - accessible anywhere during one node run
execution_id_var: ContextVar[Optional[str]] = ContextVar("execution_id", default=None)


def get_execution_id() -> Optional[str]:
    """Get the current execution ID from context."""
    return execution_id_var.get()


def generate_execution_id() -> str:
    """Generate a new unique execution ID."""
    return str(uuid.uuid4())


@contextmanager
def execution_scope(execution_id: Optional[str] = None) -> Iterator[str]:
    """Bind an execution ID for the duration of the block."""
    execution_id = execution_id or generate_execution_id()
    token = execution_id_var.set(execution_id)
    try:
        yield execution_id
    finally:
        execution_id_var.reset(token)
