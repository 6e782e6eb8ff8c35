"""Gateway client against a mocked transport."""

import httpx
import pytest

from conftest import NETCONFIG, make_gateway
from injector.crypto import Identity
from injector.errors import ProtocolError, TransportError
from injector.gateway import InjectedTxResp
from injector.transactions import build_transfer


@pytest.fixture
def tx(settings):
    return build_transfer(Identity.create(), Identity.create().address, 1, settings)


class TestProxyGateway:
    async def test_inject_success(self, gateway, network, tx) -> None:
        resp = await gateway.inject(tx)
        assert resp.success
        assert resp.tx_id
        assert network.injected == [tx.to_json()]

    async def test_application_failure_is_a_result(self, gateway, network, tx) -> None:
        network.reject = lambda t: True
        resp = await gateway.inject(tx)
        assert not resp.success
        assert resp.reason == "rejected by test network"

    async def test_error_member_is_protocol_error(self, settings, tx) -> None:
        gw = make_gateway(settings, lambda r: httpx.Response(200, json={"result": None, "error": "busy"}))
        with pytest.raises(ProtocolError, match="busy"):
            await gw.inject(tx)

    async def test_non_json_body(self, settings, tx) -> None:
        gw = make_gateway(settings, lambda r: httpx.Response(502, text="Bad Gateway"))
        with pytest.raises(ProtocolError, match="502"):
            await gw.inject(tx)

    async def test_schema_mismatch(self, settings, tx) -> None:
        gw = make_gateway(settings, lambda r: httpx.Response(200, json={"result": {"ok": True}}))
        with pytest.raises(ProtocolError):
            await gw.inject(tx)

    async def test_connect_error_is_transport_error(self, settings, tx) -> None:
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        gw = make_gateway(settings, refuse)
        with pytest.raises(TransportError, match="refused"):
            await gw.inject(tx)
        outcome = await gw.try_inject(tx)
        assert isinstance(outcome, TransportError)

    async def test_account_lookup(self, gateway, network) -> None:
        known = Identity.create().address
        network.accounts.add(known)
        assert await gateway.get_account(known) == {"id": known}
        assert await gateway.get_account(Identity.create().address) is None

    async def test_nodeinfo_as_nodelist(self, gateway) -> None:
        nodes = await gateway.get_nodelist()
        assert [(n.ip, n.port) for n in nodes] == [("10.0.0.1", 9001)]


class TestRpcGateway:
    async def test_inject_success(self, rpc_gateway, network, tx) -> None:
        resp = await rpc_gateway.inject(tx)
        assert resp.success
        assert network.injected == [tx.to_json()]

    async def test_rpc_error(self, rpc_settings, tx) -> None:
        body = {"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "tx rejected"}}
        gw = make_gateway(rpc_settings, lambda r: httpx.Response(200, json=body))
        with pytest.raises(ProtocolError, match="tx rejected"):
            await gw.inject(tx)

    async def test_missing_result(self, rpc_settings, tx) -> None:
        gw = make_gateway(rpc_settings, lambda r: httpx.Response(200, json={"jsonrpc": "2.0", "id": 1}))
        with pytest.raises(ProtocolError):
            await gw.inject(tx)

    async def test_account_lookup(self, rpc_gateway, network) -> None:
        known = Identity.create().address
        network.accounts.add(known)
        assert await rpc_gateway.get_account(known) == {"id": known}
        assert await rpc_gateway.get_account(Identity.create().address) is None

    async def test_network_config(self, rpc_gateway) -> None:
        assert await rpc_gateway.get_network_config() == NETCONFIG


def test_failure_result_from_error() -> None:
    resp = InjectedTxResp.from_error(TransportError("timed out"))
    assert resp.to_json() == {"reason": "timed out", "status": 500, "success": False, "txId": None}
