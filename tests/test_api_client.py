# tests/test_api_client.py
from __future__ import annotations

import json

import httpx
import pytest

from epress_node.client.api import EpressApiClient
from epress_node.errors import (
    FeatureDisabledError,
    NotFoundError,
    ProtocolError,
    SignatureMismatchError,
    TransientChannelError,
    ValidationFailedError,
)

NODE = "https://node.example"
ADDRESS = "0x" + "34" * 20


def _client(handler) -> EpressApiClient:
    return EpressApiClient(NODE, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_node_address_is_fetched_once() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(200, json={"address": ADDRESS, "url": NODE, "title": "Node"})

    client = _client(handler)
    assert await client.node_address() == ADDRESS
    assert await client.node_address() == ADDRESS
    await client.aclose()
    assert calls == ["/api/v1/profile"]


@pytest.mark.asyncio
async def test_submit_comment_posts_payload() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"id": 12, "status": "PENDING"})

    result = await _client(handler).submit_comment(
        3, "Hello", "Reader", {"type": "EMAIL", "email": "r@example.com"}
    )
    assert result["id"] == 12
    assert seen[0].url.path == "/api/v1/comments"
    assert json.loads(seen[0].content) == {
        "publication_id": 3,
        "body": "Hello",
        "author_name": "Reader",
        "auth": {"type": "EMAIL", "email": "r@example.com"},
    }


@pytest.mark.asyncio
async def test_list_comments_returns_items() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v1/publications/3/comments"
        return httpx.Response(200, json={"items": [{"id": 1}], "total": 1})

    assert await _client(handler).list_comments(3) == [{"id": 1}]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status_code", "body", "expected"),
    [
        (400, {"detail": {"code": "INVALID_SIGNATURE", "message": "Invalid signature"}},
         SignatureMismatchError),
        (403, {"detail": {"code": "COMMENT_DISABLED", "message": "off"}}, FeatureDisabledError),
        (404, {"detail": {"code": "NOT_FOUND", "message": "missing"}}, NotFoundError),
        (422, {"detail": [{"loc": ["body"], "msg": "field required"}]}, ValidationFailedError),
        (418, {"detail": "teapot"}, ProtocolError),
    ],
)
async def test_rejections_map_to_protocol_errors(
    status_code: int, body: dict, expected: type[ProtocolError]
) -> None:
    client = _client(lambda request: httpx.Response(status_code, json=body))
    with pytest.raises(expected) as excinfo:
        await client.submit_comment(1, "x", "y", {})
    if isinstance(body["detail"], dict):
        assert excinfo.value.message == body["detail"]["message"]
        assert excinfo.value.code == body["detail"]["code"]


@pytest.mark.asyncio
async def test_server_errors_are_transient() -> None:
    client = _client(lambda request: httpx.Response(503, text="unavailable"))
    with pytest.raises(TransientChannelError):
        await client.list_comments(1)


@pytest.mark.asyncio
async def test_transport_errors_propagate() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(httpx.TransportError):
        await _client(handler).list_comments(1)
