"""Pytest configuration and shared fixtures."""

import asyncio
import io
import json
from collections.abc import Callable

import httpx
import pytest

from injector.config import Settings, load_settings
from injector.crypto import hash_hex
from injector.gateway import GatewayClient

NODES = [{"id": "node-1", "ip": "10.0.0.1", "port": 9001, "publicKey": "ab" * 32}]
NETCONFIG = {"p2p": {"minNodes": 10, "maxNodes": 100}, "sharding": {"nodesPerConsensusGroup": 5}}


class FakeNetwork:
    """In-memory stand-in for a gateway plus the nodes behind it.

    Speaks both the proxy (``/inject``, ``/account/{addr}``, ``/nodeinfo``) and
    the JSON-RPC dialect. Registered aliases become visible accounts unless
    ``unlanded`` says otherwise. ``delay`` holds back the answer to a single
    injected transaction.
    """

    def __init__(self) -> None:
        self.injected: list[dict] = []
        self.accounts: set[str] = set()
        self.reject: Callable[[dict], bool] = lambda tx: False
        self.unlanded: Callable[[dict], bool] = lambda tx: False
        self.latency = 0.0
        self.delay: Callable[[dict], float] = lambda tx: 0.0
        self.registrations = 0

    async def submit(self, tx: dict) -> dict:
        self.injected.append(tx)
        if tx["type"] == "register":
            self.registrations += 1
        if wait := self.delay(tx):
            await asyncio.sleep(wait)
        if self.reject(tx):
            return {"reason": "rejected by test network", "status": 400, "success": False, "txId": None}
        if tx["type"] == "register" and not self.unlanded(tx):
            self.accounts.add(tx["from"])
        return {"reason": "", "status": 200, "success": True, "txId": hash_hex(json.dumps(tx, sort_keys=True))}

    def of_type(self, kind: str) -> list[dict]:
        return [tx for tx in self.injected if tx["type"] == kind]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if self.latency:
            await asyncio.sleep(self.latency)
        path = request.url.path

        if path.endswith("/netconfig"):
            return httpx.Response(200, json={"config": NETCONFIG})
        if request.method == "GET" and path.startswith("/account/"):
            addr = path.rsplit("/", 1)[-1]
            return httpx.Response(200, json={"account": {"id": addr} if addr in self.accounts else None})
        if request.method == "GET" and path == "/nodeinfo":
            n = NODES[0]
            return httpx.Response(200, json={"nodeInfo": {
                "id": n["id"], "external_ip": n["ip"], "external_port": n["port"], "public_key": n["publicKey"],
            }})
        if path == "/inject":
            tx = json.loads(json.loads(request.content)["tx"])
            return httpx.Response(200, json={"result": await self.submit(tx), "error": None})

        body = json.loads(request.content)
        method, params = body["method"], body["params"]
        if method == "lib_sendTransaction":
            result = await self.submit(json.loads(params[0]))
        elif method == "lib_getAccount":
            result = {"id": params[0]} if params[0] in self.accounts else None
        elif method == "lib_getNodeList":
            result = NODES
        else:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "no such method"}})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return load_settings(
        gateway_url="http://gateway.test",
        gateway_type="proxy",
        grace_period=0,
        drain_timeout=2.0,
        accounts_file=tmp_path / "accounts.json",
        artifacts_dir=tmp_path / "artifacts",
    )


@pytest.fixture
def rpc_settings(settings) -> Settings:
    return Settings(**{**settings.model_dump(), "gateway_type": "rpc"})


def make_gateway(settings: Settings, handler) -> GatewayClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GatewayClient(settings.gateway_url, settings.gateway_type, client=client)


@pytest.fixture
async def gateway(settings, network):
    gw = make_gateway(settings, network.handler)
    yield gw
    await gw._client.aclose()


@pytest.fixture
async def rpc_gateway(rpc_settings, network):
    gw = make_gateway(rpc_settings, network.handler)
    yield gw
    await gw._client.aclose()


@pytest.fixture
def out() -> io.StringIO:
    return io.StringIO()
