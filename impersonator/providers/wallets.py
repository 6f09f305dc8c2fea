"""
Wallet authorization sources.

Owner sets and thresholds are read fresh on every authorization check since
owners can change between votes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List

from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from ..core.validation import validate_address
from .base import NetworkProvider, WalletAuthorization, WalletAuthorizationSource
from .rpc import is_contract_address


logger = logging.getLogger(__name__)


def _selector(signature: str) -> str:
    return "0x" + function_signature_to_4byte_selector(signature).hex()


GET_OWNERS_SELECTOR = _selector("getOwners()")
GET_THRESHOLD_SELECTOR = _selector("getThreshold()")
VERSION_SELECTOR = _selector("VERSION()")


def _strip_0x(value: str) -> str:
    return value[2:] if value.startswith("0x") else value


def _decode_uint(result: str) -> int:
    raw = _strip_0x(result)
    if not raw:
        raise ValueError("Empty call result")
    return int(raw[:64], 16)


def _decode_address_array(result: str) -> List[str]:
    data = bytes.fromhex(_strip_0x(result))
    if len(data) < 64:
        raise ValueError("Call result too short for address[]")

    offset = int.from_bytes(data[0:32], "big")
    length = int.from_bytes(data[offset:offset + 32], "big")
    start = offset + 32
    if len(data) < start + 32 * length:
        raise ValueError("Truncated address[] result")

    return [
        to_checksum_address("0x" + data[start + 32 * i + 12:start + 32 * (i + 1)].hex())
        for i in range(length)
    ]


def _checksum_all(owners: Iterable[str]) -> List[str]:
    checksummed: List[str] = []
    for owner in owners:
        result = validate_address(owner)
        if not result.valid:
            raise ValueError(f"Invalid owner address: {owner}")
        checksummed.append(result.value)

    if len({o.lower() for o in checksummed}) != len(checksummed):
        raise ValueError("Duplicate owner addresses are not allowed")
    return checksummed


class StaticWalletAuthorization(WalletAuthorizationSource):
    """In-memory owners/threshold per wallet; updatable between votes."""

    def __init__(self) -> None:
        self._wallets: Dict[str, WalletAuthorization] = {}

    def set_wallet(self, wallet_address: str, owners: Iterable[str], threshold: int) -> WalletAuthorization:
        wallet = validate_address(wallet_address)
        if not wallet.valid:
            raise ValueError(wallet.error)
        auth = WalletAuthorization(owners=_checksum_all(owners), threshold=threshold)
        self._wallets[wallet.value.lower()] = auth
        return auth

    def remove_wallet(self, wallet_address: str) -> None:
        self._wallets.pop(wallet_address.lower(), None)

    async def get_owners_and_threshold(self, wallet_address: str) -> WalletAuthorization:
        auth = self._wallets.get(wallet_address.lower())
        if auth is None:
            raise LookupError(f"Wallet not found: {wallet_address}")
        return auth


class SafeOwnerSource(WalletAuthorizationSource):
    """Reads ``getOwners()`` / ``getThreshold()`` from a deployed multi-sig contract."""

    def __init__(self, provider: NetworkProvider):
        self.provider = provider

    async def is_safe(self, wallet_address: str) -> bool:
        try:
            result = await self.provider.call({"to": wallet_address, "data": VERSION_SELECTOR})
        except Exception as e:
            logger.debug(f"VERSION() call failed for {wallet_address}: {e}")
            return False
        return bool(_strip_0x(result or ""))

    async def get_owners_and_threshold(self, wallet_address: str) -> WalletAuthorization:
        wallet = validate_address(wallet_address)
        if not wallet.valid:
            raise ValueError("Invalid Safe address")

        if not await is_contract_address(wallet.value, self.provider):
            raise LookupError(f"No wallet contract deployed at {wallet.value}")

        owners_raw, threshold_raw = await asyncio.gather(
            self.provider.call({"to": wallet.value, "data": GET_OWNERS_SELECTOR}),
            self.provider.call({"to": wallet.value, "data": GET_THRESHOLD_SELECTOR}),
        )

        owners = _decode_address_array(owners_raw)
        if not owners:
            raise ValueError("Invalid Safe configuration: no owners")

        threshold = _decode_uint(threshold_raw)
        if threshold < 1 or threshold > len(owners):
            raise ValueError("Invalid Safe configuration: invalid threshold")

        return WalletAuthorization(owners=owners, threshold=threshold)
