"""Async JSON-RPC client for EVM nodes, plus a node-backed signer."""

from __future__ import annotations

import itertools
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import settings
from ..core.validation import validate_address, validate_rpc_url
from .base import FeeData, NetworkProvider, Signer, WalletConnection


logger = logging.getLogger(__name__)


class RpcError(RuntimeError):
    """The node was unreachable or answered with an error."""

    def __init__(self, method: str, error: Any):
        self.method = method
        self.error = error
        message = error.get("message") if isinstance(error, dict) else str(error)
        super().__init__(f"RPC error ({method}): {message}")


def _hex_to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    return int(value, 16)


class JsonRpcProvider(NetworkProvider):
    """Thin JSON-RPC 2.0 wrapper over httpx."""

    name = "json-rpc"

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        *,
        timeout_s: float = 30.0,
        allow_local_http: Optional[bool] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        url = rpc_url or settings.rpc_url
        allow_http = settings.allow_insecure_local_rpc if allow_local_http is None else allow_local_http
        checked = validate_rpc_url(url, allow_local_http=allow_http)
        if not checked.valid:
            raise ValueError(checked.error)

        self.rpc_url = url
        self._ids = itertools.count(1)
        self._client = httpx.AsyncClient(timeout=timeout_s, transport=transport)

    async def send(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }

        # httpx error text embeds the endpoint URL (and any key in its path).
        try:
            response = await self._client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(f"RPC {method} returned HTTP {e.response.status_code}")
            raise RpcError(method, f"HTTP {e.response.status_code}") from None
        except httpx.HTTPError as e:
            logger.warning(f"RPC {method} transport failure: {type(e).__name__}")
            raise RpcError(method, f"transport failure ({type(e).__name__})") from None
        except ValueError:
            raise RpcError(method, "invalid JSON response") from None

        if "error" in result:
            raise RpcError(method, result["error"])

        return result.get("result")

    async def get_chain_id(self) -> int:
        return int(await self.send("eth_chainId", []), 16)

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return int(await self.send("eth_estimateGas", [_to_rpc_tx(tx)]), 16)

    async def get_fee_data(self) -> FeeData:
        gas_price = _hex_to_int(await self.send("eth_gasPrice", []))

        max_fee = None
        priority_fee = None
        try:
            block = await self.send("eth_getBlockByNumber", ["latest", False])
            base_fee = _hex_to_int((block or {}).get("baseFeePerGas"))
            if base_fee is not None:
                priority_fee = _hex_to_int(await self.send("eth_maxPriorityFeePerGas", []))
                max_fee = base_fee * 2 + (priority_fee or 0)
        except RpcError as e:
            # Pre-London chains and some dev nodes lack EIP-1559 methods.
            logger.debug(f"EIP-1559 fee data unavailable: {e}")

        return FeeData(
            gas_price=gas_price,
            max_fee_per_gas=max_fee,
            max_priority_fee_per_gas=priority_fee,
        )

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return int(await self.send("eth_getTransactionCount", [address, block]), 16)

    async def get_code(self, address: str) -> str:
        return await self.send("eth_getCode", [address, "latest"])

    async def get_balance(self, address: str) -> int:
        return int(await self.send("eth_getBalance", [address, "latest"]), 16)

    async def call(self, tx: Dict[str, Any], block: str = "latest") -> str:
        return await self.send("eth_call", [_to_rpc_tx(tx), block])

    async def close(self) -> None:
        await self._client.aclose()


async def is_contract_address(address: str, provider: NetworkProvider) -> bool:
    """True if ``address`` has code deployed; False for plain accounts or on error."""
    try:
        code = await provider.get_code(address)
    except (httpx.HTTPError, RpcError) as e:
        logger.warning(f"getCode failed for {address}: {e}")
        return False
    return code not in (None, "0x", "0x0")


def _to_rpc_tx(params: Dict[str, Any]) -> Dict[str, Any]:
    tx: Dict[str, Any] = {}
    for key, value in params.items():
        if value is None:
            continue
        tx[key] = hex(value) if isinstance(value, int) and not isinstance(value, bool) else value
    return tx


class JsonRpcSigner(Signer):
    """
    Submits ``eth_sendTransaction`` for an account the node can sign for.

    On a forked development node the impersonated account is unlocked
    (``anvil_impersonateAccount`` / ``hardhat_impersonateAccount``), which is
    exactly the account this signer represents.
    """

    def __init__(self, provider: NetworkProvider, address: str):
        checked = validate_address(address)
        if not checked.valid:
            raise ValueError(checked.error)
        self.provider = provider
        self.address = checked.value

    async def get_address(self) -> str:
        return self.address

    async def send_transaction(self, params: Dict[str, Any]) -> str:
        tx = _to_rpc_tx({"from": self.address, **params})
        tx_hash = await self.provider.send("eth_sendTransaction", [tx])
        logger.info(f"Transaction submitted: {tx_hash}")
        return tx_hash


class NodeWalletConnection(WalletConnection):
    """Wallet connection backed by the node's own account management."""

    def __init__(self, provider: NetworkProvider, address: Optional[str] = None):
        self.provider = provider
        self.address = address

    def connect(self, address: str) -> None:
        self.address = address

    def disconnect(self) -> None:
        self.address = None

    async def get_signer(self) -> Optional[Signer]:
        if not self.address:
            return None
        return JsonRpcSigner(self.provider, self.address)
