"""
Nonce management for locally issued transactions.

Keeps, per address, the next nonce known not to have been used and reconciles
it with the node's pending transaction count so that transactions sent through
another path never cause a nonce to be reissued.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from ...providers.base import NetworkProvider


@dataclass
class NonceState:
    """Tracks nonce state for one address."""
    address: str
    last_issued: int                            # Local high-water mark
    network_nonce: int                          # Last pending count seen on-chain
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NonceManager:
    """
    Issues nonces per address.

    Features:
    - Never issues below the network's pending count
    - Strictly increases on each local issue
    - Per-address lock so concurrent callers awaiting the node cannot
      both read the same high-water mark
    """

    def __init__(self, provider: NetworkProvider):
        self.provider = provider
        self._states: Dict[str, NonceState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_key(self, address: str) -> str:
        return address.lower()

    def _get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def _fetch_on_chain_nonce(self, address: str) -> int:
        return await self.provider.get_transaction_count(address, "pending")

    async def get_next_nonce(self, address: str) -> int:
        """
        Get the next nonce for an address.

        Returns max(network pending count, last issued + 1) and records it as
        the new high-water mark. With no local history the network value is
        used as-is.
        """
        key = self._get_key(address)

        async with self._get_lock(key):
            on_chain_nonce = await self._fetch_on_chain_nonce(address)
            state = self._states.get(key)

            if state is None:
                nonce = on_chain_nonce
                self._states[key] = NonceState(
                    address=key,
                    last_issued=nonce,
                    network_nonce=on_chain_nonce,
                )
            else:
                nonce = max(on_chain_nonce, state.last_issued + 1)
                state.last_issued = nonce
                state.network_nonce = on_chain_nonce
                state.last_updated = datetime.now(timezone.utc)

            return nonce

    async def refresh_nonce(self, address: str) -> int:
        """
        Overwrite the local high-water mark with the network value.

        Used after a transaction lands or when local and network state may
        have diverged.
        """
        key = self._get_key(address)

        async with self._get_lock(key):
            on_chain_nonce = await self._fetch_on_chain_nonce(address)
            self._states[key] = NonceState(
                address=key,
                last_issued=on_chain_nonce,
                network_nonce=on_chain_nonce,
            )
            return on_chain_nonce

    def get_state(self, address: str) -> Optional[NonceState]:
        return self._states.get(self._get_key(address))

    def clear_state(self, address: str) -> None:
        self._states.pop(self._get_key(address), None)
