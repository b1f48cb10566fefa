"""
Tests for workflow items and binary descriptors
"""

import pytest

from proxyhop.engine.definitions import BinaryData, WorkflowItem

from tests.conftest import b64


@pytest.mark.parametrize("model", [BinaryData, WorkflowItem])
def test_models_use_config_dict(model):
    """Models declare their settings through model_config"""
    assert model.model_config["populate_by_name"] is True
    assert "Config" not in model.__dict__


def test_items_accept_field_names_and_aliases():
    """Items validate from host aliases and from Python field names alike"""
    by_alias = WorkflowItem.model_validate(
        {"json": {"a": 1}, "binary": {"f": {"mimeType": "text/plain", "fileSize": 3}}, "pairedItem": {"item": 2}}
    )
    by_name = WorkflowItem(
        json_data={"a": 1},
        binary_data={"f": BinaryData(mime_type="text/plain", file_size=3)},
        paired_item={"item": 2},
    )
    assert by_alias == by_name
    assert by_name.to_dict() == {
        "json": {"a": 1},
        "binary": {"f": {"mimeType": "text/plain", "fileSize": 3}},
        "pairedItem": {"item": 2},
    }


def test_binary_content():
    """Inline data is base64 decoded, stored data has no inline content"""
    assert BinaryData(data=b64(b"hi")).content() == b"hi"
    with pytest.raises(ValueError):
        BinaryData(id="bin-1").content()
