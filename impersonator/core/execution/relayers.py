"""Third-party relay endpoints that broadcast a prepared transaction for us."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlsplit

import httpx

from ...config import settings
from ..errors import DispatchFailure, RelayerUnavailable
from .models import TransactionRequest


logger = logging.getLogger(__name__)


@dataclass
class RelayerService:
    id: str
    name: str
    api_url: str
    api_key: Optional[str] = None
    enabled: bool = True

    @property
    def is_usable(self) -> bool:
        """Enabled and pointing at an https endpoint."""
        if not self.enabled or not self.api_url:
            return False
        try:
            parts = urlsplit(self.api_url)
        except ValueError:
            return False
        return parts.scheme == "https" and bool(parts.hostname)

    def headers(self) -> Dict[str, str]:
        headers = {"content-type": "application/json"}
        if self.api_key:
            headers["authorization"] = f"Bearer {self.api_key}"
        return headers


DEFAULT_RELAYERS: List[RelayerService] = [
    RelayerService(id="openrelay", name="OpenRelay", api_url="https://api.openrelay.xyz/v1/relay"),
    RelayerService(id="gelato", name="Gelato", api_url="https://relay.gelato.digital"),
    RelayerService(id="custom", name="Custom Relayer", api_url="", enabled=False),
]


def select_relayer(relayers: Iterable[RelayerService]) -> RelayerService:
    """First enabled relayer with an https endpoint."""
    for relayer in relayers:
        if relayer.is_usable:
            return relayer
    raise RelayerUnavailable()


def build_relayer_payload(tx: TransactionRequest) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "to": tx.to_address,
        "value": str(tx.value or 0),
        "data": tx.data or "0x",
    }
    if tx.gas_limit is not None:
        payload["gasLimit"] = str(tx.gas_limit)
    if tx.max_fee_per_gas is not None and tx.max_priority_fee_per_gas is not None:
        payload["maxFeePerGas"] = str(tx.max_fee_per_gas)
        payload["maxPriorityFeePerGas"] = str(tx.max_priority_fee_per_gas)
    elif tx.gas_price is not None:
        payload["gasPrice"] = str(tx.gas_price)
    return payload


async def submit_to_relayer(
    tx: TransactionRequest,
    relayer: RelayerService,
    *,
    timeout_s: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """POST the transaction to ``relayer`` and return the hash it reports.

    Raises:
        RelayerUnavailable: relayer disabled or not https
        DispatchFailure: timeout, non-2xx response, or no hash in the body
    """
    if not relayer.is_usable:
        raise RelayerUnavailable(f"Relayer {relayer.name} is not configured")

    timeout = timeout_s if timeout_s is not None else settings.relayer_request_timeout_ms / 1000

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.post(
                relayer.api_url,
                json=build_relayer_payload(tx),
                headers=relayer.headers(),
            )
    except httpx.TimeoutException:
        logger.warning(f"Relayer {relayer.id} timed out after {timeout}s")
        raise DispatchFailure("Relayer request timeout")
    except httpx.RequestError as e:
        raise DispatchFailure(f"Relayer request failed: {e}")

    if response.is_error:
        raise DispatchFailure(
            f"Relayer request failed: {response.text or response.reason_phrase}"
        )

    try:
        result = response.json()
    except ValueError:
        raise DispatchFailure("Relayer returned an invalid response")

    tx_hash = None
    if isinstance(result, dict):
        tx_hash = result.get("txHash") or result.get("hash") or result.get("transactionHash")
    if not tx_hash:
        raise DispatchFailure("Relayer did not return transaction hash")

    logger.info(f"Relayer {relayer.id} accepted transaction {tx.id}: {tx_hash}")
    return tx_hash


async def get_relayer_status(
    tx_hash: str,
    relayer: RelayerService,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """Ask the relayer about a submitted hash. Non-2xx answers read as unknown."""
    if not relayer.is_usable:
        raise RelayerUnavailable(f"Relayer {relayer.name} is not configured")

    url = f"{relayer.api_url.rstrip('/')}/status/{tx_hash}"
    async with httpx.AsyncClient(
        timeout=settings.relayer_request_timeout_ms / 1000,
        transport=transport,
    ) as client:
        response = await client.get(url, headers=relayer.headers())

    if response.is_error:
        return {"status": "unknown", "confirmed": False}

    result = response.json()
    return {
        "status": result.get("status") or "pending",
        "confirmed": bool(result.get("confirmed", False)),
    }
