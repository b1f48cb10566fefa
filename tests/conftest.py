import base64
from typing import List

import httpx
import pytest
import pytest_asyncio

from proxyhop.engine.runtime.pagination import Page
from proxyhop.engine.runtime.pool import ConnectionPoolManager
from proxyhop.engine.runtime.response import InterpretedResponse


@pytest_asyncio.fixture
async def pool():
    async with ConnectionPoolManager() as manager:
        yield manager


class SleepRecorder:
    """Stands in for asyncio.sleep and records every requested delay."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeper():
    return SleepRecorder()


def make_page(body, status_code: int = 200, headers=None) -> Page:
    return Page(
        output=InterpretedResponse(json=body if isinstance(body, dict) else {"data": body}, body=body),
        response={"statusCode": status_code, "headers": headers or {}, "body": body},
    )


def make_response(status_code: int = 200, url: str = "https://api.example.com/items", **kwargs) -> httpx.Response:
    return httpx.Response(status_code, request=httpx.Request("GET", url), **kwargs)


def b64(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")
