"""Gateway client.

Two gateway flavours accept the same signed transaction JSON:

* ``rpc``: JSON-RPC 2.0, ``lib_sendTransaction`` with the transaction string as
  the only param.
* ``proxy``: ``POST /inject`` with ``{"tx": <transaction string>}``.

Both map onto ``InjectedTxResp``. Anything that does not, whether the failure
is in the network or in the body, is raised as a ``GatewayError`` subclass.
"""
import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

import injector.constants as C
from injector.config import Settings
from injector.errors import GatewayError, ProtocolError, TransportError
from injector.transactions import Transaction

log = logging.getLogger("injector.gateway")

M = TypeVar("M", bound=BaseModel)


class InjectedTxResp(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    reason: str
    status: int
    success: bool
    tx_id: str | None = Field(default=None, alias="txId")

    @classmethod
    def from_error(cls, err: BaseException) -> "InjectedTxResp":
        """Failure result for an injection that never produced a gateway answer."""
        return cls(reason=str(err) or type(err).__name__, status=C.FAILURE_STATUS, success=False)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class RpcError(BaseModel):
    code: int = 0
    message: str = ""


class RpcResponse(BaseModel):
    jsonrpc: str = "2.0"
    id: int | str | None = None
    result: Any = None
    error: RpcError | None = None


class ProxyInjectResponse(BaseModel):
    result: InjectedTxResp | None = None
    error: Any = None


class AccountResponse(BaseModel):
    account: dict[str, Any] | None = None


class NodeInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    ip: str
    port: int
    public_key: str | None = Field(default=None, alias="publicKey")


def rpc_payload(method: str, params: list[Any], req_id: int = 1) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "method": method, "params": params, "id": req_id}


def _parse(model: type[M], data: Any) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"Unexpected {model.__name__} body: {e.error_count()} validation error(s)") from e


class GatewayClient:
    """Async client for one gateway. Safe to share between concurrent tasks."""

    def __init__(
        self,
        url: str,
        gateway_type: C.GatewayType | str = C.GatewayType.RPC,
        *,
        timeout: float = C.REQUEST_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url.rstrip("/")
        self.gateway_type = C.GatewayType(gateway_type)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_connections=1000, max_keepalive_connections=100),
        )

    @classmethod
    def from_settings(cls, settings: Settings, client: httpx.AsyncClient | None = None) -> "GatewayClient":
        return cls(settings.gateway_url, settings.gateway_type, timeout=settings.request_timeout, client=client)

    async def __aenter__(self) -> "GatewayClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def __repr__(self) -> str:
        return f"GatewayClient({self.gateway_type}, {self.url})"

    async def _request(self, method: str, url: str, payload: dict | None = None) -> Any:
        try:
            resp = await self._client.request(method, url, json=payload)
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}" if str(e) else type(e).__name__) from e
        try:
            return resp.json()
        except ValueError as e:
            raise ProtocolError(f"HTTP {resp.status_code} from {url}: body is not JSON") from e

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        body = await self._request("POST", self.url, rpc_payload(method, params))
        rpc = _parse(RpcResponse, body)
        if rpc.error is not None:
            raise ProtocolError(f"RPC error {rpc.error.code}: {rpc.error.message}")
        return rpc.result

    async def inject(self, tx: Transaction) -> InjectedTxResp:
        wire = tx.to_wire()
        log.debug("inject %s via %s: %s", tx.type, self.gateway_type, wire)
        if self.gateway_type is C.GatewayType.RPC:
            result = await self._rpc("lib_sendTransaction", [wire])
            if result is None:
                raise ProtocolError("RPC response carried neither result nor error")
            return _parse(InjectedTxResp, result)

        body = await self._request("POST", f"{self.url}/inject", {"tx": wire})
        proxy = _parse(ProxyInjectResponse, body)
        if proxy.error is not None or proxy.result is None:
            raise ProtocolError(f"Tx injection failed: {proxy.error}")
        return proxy.result

    async def try_inject(self, tx: Transaction) -> InjectedTxResp | GatewayError:
        """Like ``inject`` but hands gateway failures back as values for the aggregator."""
        try:
            return await self.inject(tx)
        except GatewayError as e:
            log.debug("%s injection failed: %s", tx.type, e)
            return e

    async def get_account(self, address: str) -> dict[str, Any] | None:
        """Account record for ``address``, or None when the network does not know it."""
        if self.gateway_type is C.GatewayType.RPC:
            result = await self._rpc("lib_getAccount", [address])
            return result if result else None
        body = await self._request("GET", f"{self.url}/account/{address}")
        return _parse(AccountResponse, body).account

    async def get_nodelist(self) -> list[NodeInfo]:
        """Active consensus nodes. A proxy only reports one random node."""
        if self.gateway_type is C.GatewayType.RPC:
            nodes = await self._rpc("lib_getNodeList", [])
            if not isinstance(nodes, list):
                raise ProtocolError(f"Unexpected node list: {nodes!r}")
            return [_parse(NodeInfo, n) for n in nodes]

        body = await self._request("GET", f"{self.url}/nodeinfo")
        info = body.get("nodeInfo") if isinstance(body, dict) else None
        if not isinstance(info, dict):
            raise ProtocolError(f"Unexpected node info: {body!r}")
        return [_parse(NodeInfo, {
            "id": info.get("id"),
            "ip": info.get("external_ip"),
            "port": info.get("external_port"),
            "publicKey": info.get("public_key"),
        })]

    async def get_network_config(self) -> dict[str, Any]:
        """Current network configuration, read from the first active node."""
        nodes = await self.get_nodelist()
        if not nodes:
            raise ProtocolError("Node list is empty")
        node = nodes[0]
        body = await self._request("GET", f"http://{node.ip}:{node.port}/netconfig")
        if not isinstance(body, dict) or "config" not in body:
            raise ProtocolError(f"Node {node.ip}:{node.port} returned no config")
        return body["config"]
