import asyncio
import copy
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List

from proxyhop.engine.definitions import WorkflowItem
from proxyhop.engine.runtime.models import (
    AggregationSpec,
    AggregationType,
    BatchingSpec,
    MergeStrategy,
)

logger = logging.getLogger(__name__)


async def wait_for_batch(
    item_index: int,
    item_count: int,
    spec: BatchingSpec,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> None:
    """Sleep between batches, before the first item of every batch but the first."""
    size = spec.effective_size(item_count)
    if item_index > 0 and item_index % size == 0 and spec.batch_interval_ms > 0:
        logger.debug(f"Batch boundary at item {item_index}, waiting {spec.batch_interval_ms}ms")
        await sleep(spec.batch_interval_ms / 1000)


def deep_merge(target: Dict[str, Any], source: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in source.items():
        if isinstance(value, dict):
            if not isinstance(target.get(key), dict):
                target[key] = {}
            deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)
    return target


def _status_of(data: Dict[str, Any]) -> Any:
    return data.get("statusCode", data.get("status"))


def aggregate_items(items: List[WorkflowItem], spec: AggregationSpec) -> List[WorkflowItem]:
    """Collapse a batch's output items into one item."""
    if spec.type == AggregationType.MERGE:
        merged: Dict[str, Any] = {}
        for item in items:
            if spec.merge_strategy == MergeStrategy.DEEP:
                deep_merge(merged, item.json_data)
            else:
                merged.update(item.json_data)
        if spec.include_metadata:
            merged["_metadata"] = {
                "totalItems": len(items),
                "aggregationType": "merge",
                "mergeStrategy": spec.merge_strategy.value,
            }
        result = merged

    elif spec.type == AggregationType.ARRAY:
        result = {
            "items": [{**item.json_data, "_itemIndex": index} for index, item in enumerate(items)]
        }
        if spec.include_metadata:
            result["_metadata"] = {"totalItems": len(items), "aggregationType": "array"}

    else:
        failed = [item for item in items if item.json_data.get("error")]
        distribution: Dict[str, int] = {}
        for item in items:
            status = _status_of(item.json_data)
            if status:
                distribution[str(status)] = distribution.get(str(status), 0) + 1
        result = {
            "totalItems": len(items),
            "successfulItems": len(items) - len(failed),
            "failedItems": len(failed),
            "aggregationType": "summary",
            "statusCodeDistribution": distribution,
        }
        errors = [item.json_data["error"] for item in failed]
        if errors:
            result["errors"] = errors
        if spec.include_metadata:
            result["_metadata"] = {
                "aggregationType": "summary",
                "generatedAt": datetime.now(timezone.utc).isoformat(),
            }

    return [WorkflowItem(json=result, paired_item={"item": 0})]
