import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from generator.errors import TxErrorKind, classify_exception
from infra.metrics import Metrics
from infra.rpc import AsyncRPC, RPCError


async def _serve(handler):
    app = web.Application()
    app.router.add_post("/", handler)
    server = TestServer(app)
    await server.start_server()
    return server


@pytest.mark.asyncio
async def test_result_and_node_error() -> None:
    async def handler(request):
        body = await request.json()
        if body["method"] == "eth_chainId":
            return web.json_response({"jsonrpc": "2.0", "id": body["id"], "result": "0x7f8"})
        return web.json_response(
            {"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32000, "message": "nonce too low"}}
        )

    server = await _serve(handler)
    metrics = Metrics()
    rpc = AsyncRPC(str(server.make_url("/")), metrics=metrics)
    try:
        assert await rpc.call("eth_chainId", []) == "0x7f8"
        with pytest.raises(RPCError) as info:
            await rpc.call("eth_sendRawTransaction", ["0x00"])
        assert info.value.code == -32000
        assert classify_exception(info.value) is TxErrorKind.NONCE_TOO_LOW
        assert rpc.stats()[0]["ok"] == 1
        assert metrics.snapshot()["rpc_calls"] == {"eth_chainId": 1, "eth_sendRawTransaction": 1}
    finally:
        await rpc.close()
        await server.close()


@pytest.mark.asyncio
async def test_transport_errors_retry_except_for_sends() -> None:
    hits = {"eth_blockNumber": 0, "eth_sendRawTransaction": 0}

    async def handler(request):
        body = await request.json()
        hits[body["method"]] += 1
        return web.Response(status=503, text="busy")

    server = await _serve(handler)
    rpc = AsyncRPC(str(server.make_url("/")), max_retries=2, backoff_base_s=0.0, metrics=Metrics())
    try:
        with pytest.raises(RPCError, match="http_503"):
            await rpc.call("eth_blockNumber", [])
        with pytest.raises(RPCError):
            await rpc.call("eth_sendRawTransaction", ["0x00"])
    finally:
        await rpc.close()
        await server.close()

    assert hits == {"eth_blockNumber": 3, "eth_sendRawTransaction": 1}


@pytest.mark.asyncio
async def test_connection_refused_classifies_as_network() -> None:
    rpc = AsyncRPC("http://127.0.0.1:9", max_retries=0, metrics=Metrics())
    try:
        with pytest.raises(RPCError) as info:
            await rpc.call("eth_blockNumber", [])
    finally:
        await rpc.close()
    assert classify_exception(info.value) is TxErrorKind.NETWORK_ERROR


@pytest.mark.asyncio
async def test_method_name_stays_out_of_failure_text() -> None:
    async def slow(request):
        await asyncio.sleep(0.5)
        return web.json_response({"jsonrpc": "2.0", "id": 1, "result": "0x1"})

    server = await _serve(slow)
    rpc = AsyncRPC(str(server.make_url("/")), max_retries=0, metrics=Metrics())
    refused = AsyncRPC("http://127.0.0.1:9", max_retries=0, metrics=Metrics())
    try:
        with pytest.raises(RPCError) as timed_out:
            await rpc.call("eth_gasPrice", [], timeout_s=0.05)
        with pytest.raises(RPCError) as down:
            await refused.call("eth_gasPrice", [])
    finally:
        await rpc.close()
        await refused.close()
        await server.close()

    assert down.value.method == "eth_gasPrice"
    assert "gas" not in str(down.value).lower()
    assert classify_exception(down.value) is TxErrorKind.NETWORK_ERROR
    assert classify_exception(timed_out.value) is TxErrorKind.TIMEOUT
