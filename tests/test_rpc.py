"""Tests for chainwatch/rpc.py — getTransaction over HTTP (respx-mocked)."""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from chainwatch.exceptions import FetchError, FetchTimeoutError
from chainwatch.rpc import SolanaRPCClient

RPC_URL = "https://rpc.example.com"


@pytest.fixture
async def client() -> SolanaRPCClient:
    rpc = SolanaRPCClient(RPC_URL, timeout=5)
    yield rpc
    await rpc.close()


@respx.mock
async def test_get_transaction_request_shape(client: SolanaRPCClient) -> None:
    route = respx.post(RPC_URL).mock(
        return_value=httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"slot": 5}})
    )
    result = await client.get_transaction("sigA")
    assert result == {"slot": 5}

    body = json.loads(route.calls.last.request.content)
    assert body["method"] == "getTransaction"
    assert body["params"] == [
        "sigA",
        {"encoding": "json", "commitment": "confirmed", "maxSupportedTransactionVersion": 0},
    ]


@respx.mock
async def test_get_transaction_null_result(client: SolanaRPCClient) -> None:
    respx.post(RPC_URL).mock(return_value=httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": None}))
    assert await client.get_transaction("sigA") is None


@respx.mock
async def test_request_ids_increase(client: SolanaRPCClient) -> None:
    route = respx.post(RPC_URL).mock(return_value=httpx.Response(200, json={"result": None}))
    await client.get_transaction("a")
    await client.get_transaction("b")
    ids = [json.loads(call.request.content)["id"] for call in route.calls]
    assert ids == [1, 2]


@respx.mock
async def test_rpc_error_raises(client: SolanaRPCClient) -> None:
    respx.post(RPC_URL).mock(
        return_value=httpx.Response(200, json={"error": {"code": -32602, "message": "Invalid signature"}})
    )
    with pytest.raises(FetchError) as exc_info:
        await client.get_transaction("bad")
    assert exc_info.value.details["method"] == "getTransaction"


@respx.mock
async def test_http_error_raises(client: SolanaRPCClient) -> None:
    respx.post(RPC_URL).mock(return_value=httpx.Response(503))
    with pytest.raises(FetchError, match="HTTP 503"):
        await client.get_transaction("sigA")


@respx.mock
async def test_invalid_json_raises(client: SolanaRPCClient) -> None:
    respx.post(RPC_URL).mock(return_value=httpx.Response(200, content=b"<html>"))
    with pytest.raises(FetchError, match="invalid JSON"):
        await client.get_transaction("sigA")


@respx.mock
async def test_timeout_raises(client: SolanaRPCClient) -> None:
    respx.post(RPC_URL).mock(side_effect=httpx.TimeoutException("timeout"))
    with pytest.raises(FetchTimeoutError):
        await client.get_transaction("sigA")


@respx.mock
async def test_connect_error_raises(client: SolanaRPCClient) -> None:
    respx.post(RPC_URL).mock(side_effect=httpx.ConnectError("refused"))
    with pytest.raises(FetchError) as exc_info:
        await client.get_transaction("sigA")
    assert not isinstance(exc_info.value, FetchTimeoutError)


@pytest.mark.parametrize("body", [[1, 2], "ok", 5])
@respx.mock
async def test_non_object_body_is_fetch_error(client: SolanaRPCClient, body) -> None:
    respx.post(RPC_URL).mock(return_value=httpx.Response(200, json=body))
    with pytest.raises(FetchError, match="non-object"):
        await client.get_transaction("sigA")
