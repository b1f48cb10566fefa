"""
Tests for response decoding and shaping
"""

import base64

import pytest

from proxyhop.engine.definitions import BinaryData
from proxyhop.engine.errors import InvalidJSONResponseError
from proxyhop.engine.runtime.models import RequestSpec, ResponseFormat
from proxyhop.engine.runtime.response import ResponseInterpreter, is_json_content_type

from tests.conftest import make_response

URL = "https://api.example.com/items"


def _spec(**kwargs):
    return RequestSpec(url=URL, **kwargs)


def test_json_format_decodes_object():
    """json format parses the body"""
    response = make_response(json={"a": 1})
    result = ResponseInterpreter().interpret(response, _spec(response_format="json"))
    assert result.json == {"a": 1}


def test_json_format_rejects_invalid_json():
    """json format fails on non JSON bodies and suggests other formats"""
    response = make_response(text="not json")
    with pytest.raises(InvalidJSONResponseError) as exc_info:
        ResponseInterpreter().interpret(response, _spec(response_format="json"))
    assert "Auto-detect" in str(exc_info.value)
    assert "Text" in str(exc_info.value)


def test_autodetect_plain_text_wrapped():
    """autodetect returns plain text wrapped under the output field"""
    response = make_response(text="not json", headers={"content-type": "text/plain"})
    result = ResponseInterpreter().interpret(response, _spec())
    assert result.json == {"data": "not json"}


def test_autodetect_json_content_type():
    """autodetect decodes JSON content types"""
    response = make_response(content=b'{"b": [1]}', headers={"content-type": "application/json; charset=utf-8"})
    assert ResponseInterpreter().interpret(response, _spec()).json == {"b": [1]}


def test_autodetect_broken_json_falls_back_to_text():
    """A broken JSON body under autodetect is returned as text"""
    response = make_response(content=b"{oops", headers={"content-type": "application/json"})
    assert ResponseInterpreter().interpret(response, _spec()).json == {"data": "{oops"}


def test_text_format_uses_output_field():
    """text format always wraps under the configured field"""
    response = make_response(json={"a": 1})
    result = ResponseInterpreter().interpret(
        response, _spec(response_format="text", output_field_name="raw")
    )
    assert result.json == {"raw": '{"a":1}'} or result.json == {"raw": '{"a": 1}'}


def test_json_array_wrapped_in_bare_mode():
    """Non object JSON is wrapped so items are always objects"""
    response = make_response(json=[1, 2, 3])
    assert ResponseInterpreter().interpret(response, _spec()).json == {"data": [1, 2, 3]}


def test_full_response_envelope():
    """Full response mode returns status, headers and data"""
    response = make_response(201, json={"id": 7}, headers={"x-request-id": "r1"})
    result = ResponseInterpreter().interpret(response, _spec(full_response=True))
    assert result.json["status"] == 201
    assert result.json["statusText"] == "Created"
    assert result.json["headers"]["x-request-id"] == "r1"
    assert result.json["data"] == {"id": 7}


def test_file_format_produces_binary():
    """file format returns a binary descriptor under the output field"""
    response = make_response(
        content=b"%PDF-1.4",
        headers={"content-type": "application/pdf", "content-disposition": 'attachment; filename="doc.pdf"'},
    )
    result = ResponseInterpreter().interpret(response, _spec(response_format="file"))
    binary = result.binary["data"]
    assert isinstance(binary, BinaryData)
    assert binary.mime_type == "application/pdf"
    assert binary.file_name == "doc.pdf"
    assert binary.file_extension == "pdf"
    assert binary.file_size == 8
    assert base64.b64decode(binary.data) == b"%PDF-1.4"
    assert result.json == {}


def test_file_name_from_url_path():
    """Without content-disposition the URL path names the file"""
    response = make_response(content=b"x", url="https://api.example.com/files/report.csv")
    binary = ResponseInterpreter().decode(response, ResponseFormat.FILE)
    assert binary.file_name == "report.csv"


def test_custom_binary_preparer():
    """The host's binary preparer is used for file responses"""
    calls = []

    def prepare(content, file_name, mime_type):
        calls.append((content, mime_type))
        return BinaryData(id="stored-1", mime_type=mime_type)

    response = make_response(content=b"abc", headers={"content-type": "image/png"})
    result = ResponseInterpreter(prepare).interpret(response, _spec(response_format="file"))
    assert result.binary["data"].id == "stored-1"
    assert calls == [(b"abc", "image/png")]


def test_pagination_context():
    """The pagination context exposes status, headers and body"""
    response = make_response(json={"items": []}, headers={"link": "<next>"})
    context = ResponseInterpreter().pagination_context(response, {"items": []})
    assert context["statusCode"] == 200
    assert context["headers"]["link"] == "<next>"
    assert context["body"] == {"items": []}
    assert "redirectHistory" not in context


@pytest.mark.parametrize(
    "value, expected",
    [
        ("application/json", True),
        ("application/json; charset=utf-8", True),
        ("application/problem+json", True),
        ("text/plain", False),
        ("", False),
    ],
)
def test_json_content_types(value, expected):
    assert is_json_content_type(value) is expected
