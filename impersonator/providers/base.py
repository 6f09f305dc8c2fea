from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass
class FeeData:
    """Current fee market snapshot (all values in wei)."""
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None


@dataclass
class WalletAuthorization:
    """Owner set and approval threshold of a wallet, read at check time."""
    owners: List[str]
    threshold: int = 1

    def __post_init__(self):
        if not 1 <= self.threshold <= len(self.owners):
            raise ValueError(
                f"Invalid wallet configuration: threshold {self.threshold} "
                f"for {len(self.owners)} owners"
            )

    def is_owner(self, address: str) -> bool:
        needle = address.lower()
        return any(owner.lower() == needle for owner in self.owners)


class NetworkProvider(ABC):
    """Read access to a chain plus gas estimation"""

    name: str = "network"

    @abstractmethod
    async def get_chain_id(self) -> int:
        pass

    @abstractmethod
    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        """Estimate gas for a call object without broadcasting it"""
        pass

    @abstractmethod
    async def get_fee_data(self) -> FeeData:
        pass

    @abstractmethod
    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        pass

    @abstractmethod
    async def get_code(self, address: str) -> str:
        pass

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        pass

    @abstractmethod
    async def call(self, tx: Dict[str, Any], block: str = "latest") -> str:
        """Read-only contract call; returns the raw hex result"""
        pass

    @abstractmethod
    async def send(self, method: str, params: List[Any]) -> Any:
        """Raw JSON-RPC pass-through"""
        pass


class Signer(ABC):
    """Something that can authorize and submit a transaction for one address"""

    @abstractmethod
    async def get_address(self) -> str:
        pass

    @abstractmethod
    async def send_transaction(self, params: Dict[str, Any]) -> str:
        """Submit the transaction and return its hash"""
        pass


class WalletConnection(ABC):
    """Hands out the signer of the currently connected wallet, if any"""

    @abstractmethod
    async def get_signer(self) -> Optional[Signer]:
        pass


class WalletAuthorizationSource(ABC):
    """Where owner sets and thresholds come from"""

    @abstractmethod
    async def get_owners_and_threshold(self, wallet_address: str) -> WalletAuthorization:
        pass
