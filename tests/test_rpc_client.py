"""Tests for api/rpc_client.py against an in-process aiohttp node."""

import asyncio

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from api.rpc_client import JsonRpcClient
from core.exceptions import CallTimeoutError, FeeUnderpricedError, RpcError, TransportError


async def _rpc_handler(request):
    body = await request.json()
    method = body["method"]
    reply = {"jsonrpc": "2.0", "id": body["id"]}

    if method == "eth_chainId":
        reply["result"] = hex(84532)
    elif method == "eth_blockNumber":
        reply["result"] = "0x1b4"
    elif method == "eth_sendRawTransaction":
        reply["error"] = {"code": -32000, "message": "replacement transaction underpriced"}
    elif method == "eth_call":
        reply["error"] = {"code": 3, "message": "execution reverted"}
    elif method == "echo_params":
        reply["result"] = body["params"]
    else:
        reply["error"] = {"code": -32601, "message": "method not found"}
    return web.json_response(reply)


async def _bad_gateway(request):
    return web.Response(status=502, text="bad gateway")


async def _not_json(request):
    return web.Response(status=200, text="<html>maintenance</html>")


async def _slow(request):
    await asyncio.sleep(2)
    return web.json_response({"jsonrpc": "2.0", "id": 1, "result": "0x1"})


@pytest_asyncio.fixture
async def node():
    app = web.Application()
    app.router.add_post("/", _rpc_handler)
    app.router.add_post("/502", _bad_gateway)
    app.router.add_post("/html", _not_json)
    app.router.add_post("/slow", _slow)
    server = TestServer(app)
    await server.start_server()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def client():
    async with JsonRpcClient(timeout_seconds=1.0, chain_id=84532) as rpc:
        yield rpc


class TestRequest:
    @pytest.mark.asyncio
    async def test_returns_result_field(self, node, client):
        result = await client.request(str(node.make_url("/")), "echo_params", ["0xabc", "latest"])

        assert result == ["0xabc", "latest"]

    @pytest.mark.asyncio
    async def test_underpriced_error_is_classified(self, node, client):
        with pytest.raises(FeeUnderpricedError) as exc_info:
            await client.request(str(node.make_url("/")), "eth_sendRawTransaction", ["0x02"])

        assert exc_info.value.code == -32000

    @pytest.mark.asyncio
    async def test_node_error_is_rpc_error(self, node, client):
        with pytest.raises(RpcError, match="execution reverted") as exc_info:
            await client.request(str(node.make_url("/")), "eth_call", [])

        assert not isinstance(exc_info.value, FeeUnderpricedError)
        assert not isinstance(exc_info.value, TransportError)

    @pytest.mark.asyncio
    async def test_server_error_is_transport(self, node, client):
        with pytest.raises(TransportError, match="502"):
            await client.request(str(node.make_url("/502")), "eth_blockNumber")

    @pytest.mark.asyncio
    async def test_non_json_body_is_transport(self, node, client):
        with pytest.raises(TransportError):
            await client.request(str(node.make_url("/html")), "eth_blockNumber")

    @pytest.mark.asyncio
    async def test_connection_refused_is_transport(self, client):
        with pytest.raises(TransportError, match="network error"):
            await client.request("http://127.0.0.1:1/", "eth_blockNumber")

    @pytest.mark.asyncio
    async def test_slow_node_times_out(self, node, client):
        with pytest.raises(CallTimeoutError):
            await client.request(str(node.make_url("/slow")), "eth_blockNumber")


class TestProbeHealth:
    @pytest.mark.asyncio
    async def test_returns_block_number(self, node, client):
        assert await client.probe_health(str(node.make_url("/"))) == 436

    @pytest.mark.asyncio
    async def test_chain_id_mismatch_is_rejected(self, node):
        async with JsonRpcClient(timeout_seconds=1.0, chain_id=1) as rpc:
            with pytest.raises(RpcError, match="chain id"):
                await rpc.probe_health(str(node.make_url("/")))
