"""
Tests for the pagination loop
"""

from typing import List

import pytest

from proxyhop.engine.errors import (
    ExpressionError,
    MissingRequiredFieldError,
    TimedOutError,
)
from proxyhop.engine.expressions import evaluate_expression
from proxyhop.engine.runtime.models import (
    CompletionPolicy,
    JsonBody,
    PaginationMode,
    PaginationParameter,
    PaginationSpec,
    ParameterSlot,
    RequestSpec,
)
from proxyhop.engine.runtime.pagination import PaginationDriver, is_empty_body

from tests.conftest import make_page

BASE = RequestSpec(url="https://api.example.com/items")


class FakeServer:
    """Returns canned pages and records every request it receives."""

    def __init__(self, pages):
        self.pages = list(pages)
        self.requests: List[RequestSpec] = []

    async def __call__(self, request: RequestSpec):
        self.requests.append(request)
        page = self.pages[min(len(self.requests), len(self.pages)) - 1]
        if isinstance(page, Exception):
            raise page
        return page


def _driver(spec, server, sleeper=None):
    kwargs = {"sleep": sleeper} if sleeper else {}
    return PaginationDriver(spec, server, evaluate_expression, **kwargs)


def _update_spec(**kwargs):
    params = dict(
        mode=PaginationMode.UPDATE_PARAMETER,
        parameters=[PaginationParameter(slot=ParameterSlot.QUERY, name="page", value="{{ $pageCount + 1 }}")],
    )
    params.update(kwargs)
    return PaginationSpec(**params)


@pytest.mark.asyncio
async def test_stops_on_empty_response(sleeper):
    """responseIsEmpty stops after the page with an empty collection"""
    server = FakeServer(
        [make_page({"items": [1, 2]}), make_page({"items": [3]}), make_page({"items": []})]
    )
    result = await _driver(_update_spec(), server, sleeper).run(BASE)
    assert len(server.requests) == 3
    assert len(result.pages) == 3
    assert result.complete


@pytest.mark.asyncio
async def test_page_limit_is_exact(sleeper):
    """A page limit stops after exactly that many requests"""
    server = FakeServer([make_page({"items": [1]})])
    spec = _update_spec(complete_when=CompletionPolicy.CUSTOM, complete_expression="{{ false }}", page_limit=2)
    result = await _driver(spec, server, sleeper).run(BASE)
    assert len(server.requests) == 2
    assert len(result.pages) == 2


@pytest.mark.asyncio
async def test_page_limit_zero_sends_nothing(sleeper):
    """A page limit of 0 stops before the first request"""
    server = FakeServer([make_page({"items": [1]})])
    spec = _update_spec(complete_when=CompletionPolicy.CUSTOM, complete_expression="{{ false }}", page_limit=0)
    result = await _driver(spec, server, sleeper).run(BASE)
    assert server.requests == []
    assert result.pages == []
    assert result.error is None
    assert sleeper.calls == []


@pytest.mark.asyncio
async def test_page_limit_expression(sleeper):
    """The page limit may be an expression over the response"""
    server = FakeServer([make_page({"items": [1], "pages": 3})])
    spec = _update_spec(page_limit="{{ $response.body.pages }}")
    await _driver(spec, server, sleeper).run(BASE)
    assert len(server.requests) == 3


@pytest.mark.asyncio
async def test_parameter_updated_before_every_request(sleeper):
    """The page parameter is evaluated for every request, first included"""
    server = FakeServer([make_page({"items": [1]}), make_page({"items": [2]}), make_page([])])
    await _driver(_update_spec(), server, sleeper).run(BASE)
    assert [r.query["page"] for r in server.requests] == [1, 2, 3]


@pytest.mark.asyncio
async def test_parameter_slot_replaced_not_accumulated(sleeper):
    """Header and body slots keep one value each"""
    server = FakeServer([make_page({"next": "c1"}), make_page({"next": "c2"}), make_page({})])
    spec = PaginationSpec(
        mode=PaginationMode.UPDATE_PARAMETER,
        parameters=[
            PaginationParameter(slot=ParameterSlot.HEADER, name="X-Cursor", value="{{ $response.body.next }}"),
            PaginationParameter(slot=ParameterSlot.BODY, name="offset", value="={{ $pageCount * 10 }}"),
        ],
    )
    base = RequestSpec(url="https://api.example.com/search", method="POST", body=JsonBody(data={"q": "x"}))
    await _driver(spec, server, sleeper).run(base)

    first, second, third = server.requests
    assert "X-Cursor" not in first.headers
    assert second.headers == {"X-Cursor": "c1"}
    assert third.headers == {"X-Cursor": "c2"}
    assert [r.body.data for r in server.requests] == [
        {"q": "x", "offset": 0},
        {"q": "x", "offset": 10},
        {"q": "x", "offset": 20},
    ]


@pytest.mark.asyncio
async def test_literal_parameter_values_kept(sleeper):
    """Literal values are sent unchanged"""
    server = FakeServer([make_page({})])
    spec = _update_spec(parameters=[PaginationParameter(name="per_page", value="50")])
    await _driver(spec, server, sleeper).run(BASE)
    assert server.requests[0].query == {"per_page": "50"}


@pytest.mark.asyncio
async def test_next_url_mode(sleeper):
    """next URL mode follows the URL in each response until it is missing"""
    server = FakeServer(
        [
            make_page({"items": [1], "next": "https://api.example.com/items?cursor=b"}),
            make_page({"items": [2], "next": "https://api.example.com/items?cursor=c"}),
            make_page({"items": [3]}),
        ]
    )
    spec = PaginationSpec(
        mode=PaginationMode.NEXT_URL,
        next_url="{{ $response.body.next }}",
        complete_when=CompletionPolicy.CUSTOM,
        complete_expression="{{ false }}",
    )
    base = RequestSpec(url="https://api.example.com/items", query={"limit": 1})
    result = await _driver(spec, server, sleeper).run(base)
    assert [r.url for r in server.requests] == [
        "https://api.example.com/items",
        "https://api.example.com/items?cursor=b",
        "https://api.example.com/items?cursor=c",
    ]
    assert server.requests[1].query == {}
    assert len(result.pages) == 3


@pytest.mark.asyncio
async def test_specific_status_codes(sleeper):
    """Completion on status codes stops at a matching status and accepts it"""
    server = FakeServer([make_page({"a": 1}), make_page({"a": 2}, status_code=404)])
    spec = _update_spec(
        complete_when=CompletionPolicy.SPECIFIC_STATUS_CODES, status_codes={404}
    )
    result = await _driver(spec, server, sleeper).run(BASE)
    assert len(result.pages) == 2
    assert all(404 in r.accept_status_codes for r in server.requests)


@pytest.mark.asyncio
async def test_custom_completion_expression(sleeper):
    """A custom expression decides completion, braces optional"""
    server = FakeServer([make_page({"done": False}), make_page({"done": True})])
    spec = _update_spec(complete_when=CompletionPolicy.CUSTOM, complete_expression="$response.body.done")
    result = await _driver(spec, server, sleeper).run(BASE)
    assert len(result.pages) == 2


@pytest.mark.asyncio
async def test_interval_only_between_pages(sleeper):
    """The delay is evaluated per page and never applied after the last one"""
    server = FakeServer([make_page({"items": [1]}), make_page({"items": [2]}), make_page({"items": []})])
    spec = _update_spec(interval="{{ $pageCount * 1000 + 500 }}")
    await _driver(spec, server, sleeper).run(BASE)
    assert sleeper.calls == [1.5, 2.5]


@pytest.mark.asyncio
async def test_fixed_interval(sleeper):
    """A numeric interval is used as milliseconds"""
    server = FakeServer([make_page({"items": [1]}), make_page({"items": []})])
    await _driver(_update_spec(interval=250), server, sleeper).run(BASE)
    assert sleeper.calls == [0.25]


@pytest.mark.asyncio
async def test_failure_keeps_partial_pages(sleeper):
    """A failing page ends the loop and keeps earlier pages"""
    error = TimedOutError(100)
    server = FakeServer([make_page({"items": [1]}), error])
    result = await _driver(_update_spec(), server, sleeper).run(BASE)
    assert len(result.pages) == 1
    assert result.error is error
    assert not result.complete


@pytest.mark.asyncio
async def test_bad_interval_expression_is_reported(sleeper):
    """A non numeric interval is an expression error"""
    server = FakeServer([make_page({"items": [1]})])
    result = await _driver(_update_spec(interval="{{ 'soon' }}"), server, sleeper).run(BASE)
    assert isinstance(result.error, ExpressionError)
    assert len(result.pages) == 1


@pytest.mark.parametrize(
    "parameters, message",
    [
        ([], "At least one entry"),
        ([PaginationParameter(name="", value="")], "At least one entry"),
        ([PaginationParameter(name="", value="1")], "Parameter name must be set for parameter [1]"),
        (
            [PaginationParameter(name="page", value="1"), PaginationParameter(name="size", value="")],
            "Some value must be provided for parameter [2]",
        ),
    ],
)
@pytest.mark.asyncio
async def test_invalid_parameters_fail_fast(parameters, message):
    """Invalid parameters fail before any request is sent"""
    server = FakeServer([make_page({})])
    with pytest.raises(MissingRequiredFieldError) as exc_info:
        await _driver(_update_spec(parameters=parameters), server).run(BASE)
    assert message in str(exc_info.value)
    assert server.requests == []


@pytest.mark.asyncio
async def test_next_url_mode_requires_expression():
    """next URL mode needs the URL expression"""
    server = FakeServer([make_page({})])
    with pytest.raises(MissingRequiredFieldError):
        await _driver(PaginationSpec(mode=PaginationMode.NEXT_URL), server).run(BASE)


@pytest.mark.parametrize(
    "body, empty",
    [
        (None, True),
        ("", True),
        ([], True),
        ({}, True),
        ({"items": []}, True),
        ({"items": [], "meta": {}}, True),
        ({"items": [], "total": 0}, True),
        ({"items": [1]}, False),
        ({"total": 0}, False),
        ([0], False),
        ("text", False),
    ],
)
def test_is_empty_body(body, empty):
    assert is_empty_body(body) is empty
