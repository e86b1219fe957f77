"""Unit tests for ResearchGateway.

Uses httpx.MockTransport so no network calls are made.
"""

import json

import httpx

from soc_room.tools.research import (
    RESEARCH_EMPTY,
    RESEARCH_FAILED,
    RESEARCH_UNAVAILABLE,
    ResearchGateway,
)

ENDPOINT = "https://research.test/functions/v1/research-query"


def _gateway(handler, api_key: str = "") -> ResearchGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ResearchGateway(ENDPOINT, api_key=api_key, client=client)


async def test_query_posts_query_and_context() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"research": "Curfew in effect after 10pm."})

    gateway = _gateway(handler, api_key="secret")
    result = await gateway.query("Is it safe downtown?", "[USER]: Is it safe downtown?")

    assert result == "Curfew in effect after 10pm."
    [request] = seen
    assert str(request.url) == ENDPOINT
    assert json.loads(request.content) == {
        "query": "Is it safe downtown?",
        "context": "[USER]: Is it safe downtown?",
    }
    assert request.headers["Authorization"] == "Bearer secret"


async def test_http_error_degrades_to_failed_message() -> None:
    gateway = _gateway(lambda request: httpx.Response(500, json={"error": "boom"}))

    assert await gateway.query("q") == RESEARCH_FAILED


async def test_malformed_body_degrades_to_failed_message() -> None:
    gateway = _gateway(lambda request: httpx.Response(200, text="not json"))

    assert await gateway.query("q") == RESEARCH_FAILED


async def test_network_failure_degrades_to_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    gateway = _gateway(handler)

    assert await gateway.query("q") == RESEARCH_UNAVAILABLE


async def test_timeout_degrades_to_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    gateway = _gateway(handler)

    assert await gateway.query("q") == RESEARCH_UNAVAILABLE


async def test_empty_research_field() -> None:
    gateway = _gateway(lambda request: httpx.Response(200, json={"research": ""}))

    assert await gateway.query("q") == RESEARCH_EMPTY


async def test_unconfigured_endpoint_never_calls_out() -> None:
    gateway = ResearchGateway("")

    assert not gateway.is_configured
    assert await gateway.query("q") == RESEARCH_FAILED
