import base64
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class BinaryData(BaseModel):
    """
    Descriptor for a file attached to an item.

    Small payloads travel inline as base64 in `data`; larger ones are kept in
    the host's binary store and referenced by `id`.
    """

    model_config = ConfigDict(populate_by_name=True)

    data: Optional[str] = None
    id: Optional[str] = None
    mime_type: Optional[str] = Field(None, alias="mimeType")
    file_name: Optional[str] = Field(None, alias="fileName")
    file_extension: Optional[str] = Field(None, alias="fileExtension")
    file_size: Optional[int] = Field(None, alias="fileSize")

    def content(self) -> bytes:
        if self.data is None:
            raise ValueError("Binary data is stored by reference and has no inline content")
        return base64.b64decode(self.data)


class WorkflowItem(BaseModel):
    """
    Standard unit of data passed between nodes.

    Binary data (files) is always kept apart from the JSON data.
    """

    model_config = ConfigDict(populate_by_name=True)

    json_data: Dict[str, Any] = Field(default_factory=dict, alias="json")
    binary_data: Dict[str, BinaryData] = Field(default_factory=dict, alias="binary")
    paired_item: Optional[Dict[str, int]] = Field(None, alias="pairedItem")

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"json": self.json_data}
        if self.binary_data:
            result["binary"] = {
                name: value.model_dump(by_alias=True, exclude_none=True)
                for name, value in self.binary_data.items()
            }
        if self.paired_item is not None:
            result["pairedItem"] = self.paired_item
        return result
