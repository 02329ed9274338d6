import json

import httpx
import pytest

from flowweave.credentials import CredentialResolver, InMemoryCredentialProvider
from flowweave.errors import HandlerFailureError
from flowweave.nodes import HttpRequestNode
from flowweave.nodes.basic import delay_node, echo_node, start_node, transform_node
from flowweave.nodes.condition import condition_node, evaluate, lookup


@pytest.fixture
def resolver():
    provider = InMemoryCredentialProvider()
    provider.add(
        "api", {"baseUrl": "https://api.example.com", "token": "t0k"}, owner_id="u1"
    )
    provider.add("keyed", {"apiKey": "k-1", "apiKeyHeader": "X-Key"}, owner_id="u1")
    return CredentialResolver(provider)


async def _call(handler, inputs, config, resolver=None, credential_id=None):
    resolver = resolver or CredentialResolver()
    async with resolver.scope(credential_id, "u1") as creds:
        return await handler(inputs, config, creds)


# ----------------------------------------------------------------------
# basic nodes
@pytest.mark.asyncio
async def test_start_node_merges_defaults():
    result = await _call(start_node, {"input": {"x": 1}}, {"data": {"x": 0, "y": 2}})
    assert result == {"output": {"x": 1, "y": 2}}


@pytest.mark.asyncio
async def test_echo_node_passes_input():
    assert await _call(echo_node, {"input": [1, 2]}, {}) == {"output": [1, 2]}


@pytest.mark.asyncio
async def test_transform_set_and_pick():
    result = await _call(
        transform_node,
        {"input": {"a": 1, "b": 2}},
        {"set": {"c": 3}, "pick": ["a", "c"]},
    )
    assert result == {"output": {"a": 1, "c": 3}}


@pytest.mark.asyncio
async def test_transform_rejects_non_mapping():
    with pytest.raises(HandlerFailureError) as exc_info:
        await _call(transform_node, {"input": "text"}, {})
    assert not exc_info.value.retryable


@pytest.mark.asyncio
async def test_delay_node_rejects_bad_duration():
    with pytest.raises(HandlerFailureError):
        await _call(delay_node, {"input": 1}, {"ms": "soon"})


@pytest.mark.asyncio
async def test_delay_node_passes_input():
    assert await _call(delay_node, {"input": 1}, {"ms": 1}) == {"output": 1}


# ----------------------------------------------------------------------
# condition
@pytest.mark.parametrize(
    "operator, expected, result",
    [
        ("equals", "active", True),
        ("notEquals", "active", False),
        ("contains", "act", True),
        ("exists", None, True),
    ],
)
def test_string_operators(operator, expected, result):
    assert evaluate({"user": {"status": "active"}}, "user.status", operator, expected) is result


def test_numeric_operators_coerce():
    assert evaluate({"n": "10"}, "n", "greaterThan", 5)
    assert evaluate({"n": 3}, "n", "lessThan", "4")
    assert not evaluate({"n": "abc"}, "n", "greaterThan", 1)


def test_missing_field_is_false():
    assert not evaluate({}, "absent", "equals", None)
    assert not evaluate({}, "absent", "exists", None)


def test_lookup_walks_lists():
    assert lookup({"items": [{"id": 7}]}, "items.0.id") == 7


def test_unknown_operator():
    with pytest.raises(HandlerFailureError):
        evaluate({"a": 1}, "a", "between", 1)


@pytest.mark.asyncio
async def test_condition_node_routes_to_port():
    config = {"field": "x", "operator": "greaterThan", "value": 0}

    assert await _call(condition_node, {"input": {"x": 1}}, config) == {"true": {"x": 1}}
    assert await _call(condition_node, {"input": {"x": -1}}, config) == {"false": {"x": -1}}


# ----------------------------------------------------------------------
# http_request
@pytest.mark.asyncio
async def test_http_request_with_bearer_credential(resolver):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"ok": True})

    node = HttpRequestNode(transport=httpx.MockTransport(handler))
    result = await _call(node, {"input": None}, {"url": "/items"}, resolver, "api")

    assert seen == {"url": "https://api.example.com/items", "auth": "Bearer t0k"}
    assert result["output"]["status"] == 200
    assert result["output"]["body"] == {"ok": True}


@pytest.mark.asyncio
async def test_http_request_api_key_header(resolver):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["X-Key"] == "k-1"
        return httpx.Response(200, text="pong")

    node = HttpRequestNode(transport=httpx.MockTransport(handler))
    result = await _call(
        node, {}, {"url": "https://example.com/ping"}, resolver, "keyed"
    )

    assert result["output"]["body"] == "pong"


@pytest.mark.asyncio
async def test_http_request_posts_upstream_json():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["method"] = request.method
        captured["body"] = json.loads(request.content)
        return httpx.Response(201, json={"id": 1})

    node = HttpRequestNode(transport=httpx.MockTransport(handler))
    result = await _call(
        node, {"input": {"name": "x"}}, {"url": "https://example.com/items", "method": "post"}
    )

    assert captured == {"method": "POST", "body": {"name": "x"}}
    assert result["output"]["status"] == 201


@pytest.mark.asyncio
async def test_http_request_parses_json_string_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=json.loads(request.content))

    node = HttpRequestNode(transport=httpx.MockTransport(handler))
    result = await _call(
        node,
        {},
        {"url": "https://example.com/echo", "method": "PUT", "body": '{"a": 1}'},
    )

    assert result["output"]["body"] == {"a": 1}


@pytest.mark.parametrize("status, retryable", [(503, True), (429, True), (404, False)])
@pytest.mark.asyncio
async def test_http_error_status(status, retryable):
    node = HttpRequestNode(transport=httpx.MockTransport(lambda request: httpx.Response(status)))

    with pytest.raises(HandlerFailureError) as exc_info:
        await _call(node, {}, {"url": "https://example.com/"})

    assert exc_info.value.retryable is retryable
    assert str(status) in str(exc_info.value)


@pytest.mark.asyncio
async def test_http_request_requires_url():
    with pytest.raises(HandlerFailureError) as exc_info:
        await _call(HttpRequestNode(), {}, {})
    assert not exc_info.value.retryable
