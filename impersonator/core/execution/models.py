"""
Transaction request, approval and execution models.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class ExecutionMethod(str, Enum):
    """How an approved request reaches the network."""
    DIRECT_ONCHAIN = "DIRECT_ONCHAIN"    # Signed and submitted by the connected wallet
    RELAYER = "RELAYER"                  # POSTed to a third-party relay
    SIMULATION = "SIMULATION"            # Gas estimate only, never broadcast


class TransactionRequestStatus(str, Enum):
    """Transaction request lifecycle status."""
    PENDING = "PENDING"          # Created, collecting approvals
    APPROVED = "APPROVED"        # Threshold reached
    EXECUTING = "EXECUTING"      # Handed to the dispatcher
    SUCCESS = "SUCCESS"          # Dispatcher returned a result handle
    FAILED = "FAILED"            # Dispatch failed or request expired
    REJECTED = "REJECTED"        # Vetoed by an owner


TERMINAL_STATUSES = frozenset({
    TransactionRequestStatus.SUCCESS,
    TransactionRequestStatus.FAILED,
    TransactionRequestStatus.REJECTED,
})

# Fields frozen once a request reaches a terminal status.
_PROTECTED_FIELDS = frozenset({
    "method",
    "nonce",
    "value",
    "gas_limit",
    "gas_price",
    "max_fee_per_gas",
    "max_priority_fee_per_gas",
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_millis(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return int(value.timestamp() * 1000)


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


@dataclass
class GasEstimate:
    """Gas estimation for a transaction."""
    gas_limit: int
    gas_price_wei: int
    max_fee_per_gas: Optional[int] = None      # EIP-1559
    max_priority_fee_per_gas: Optional[int] = None  # EIP-1559
    estimated_cost_wei: int = 0

    def __post_init__(self):
        if self.estimated_cost_wei == 0:
            self.estimated_cost_wei = self.gas_limit * self.gas_price_wei

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gasLimit": str(self.gas_limit),
            "gasPrice": str(self.gas_price_wei),
            "maxFeePerGas": str(self.max_fee_per_gas) if self.max_fee_per_gas is not None else None,
            "maxPriorityFeePerGas": (
                str(self.max_priority_fee_per_gas) if self.max_priority_fee_per_gas is not None else None
            ),
            "estimatedCost": str(self.estimated_cost_wei),
        }


@dataclass
class TransactionDraft:
    """An unvalidated proposal, as received from the bridge or an API caller."""
    from_address: Optional[str]
    to_address: Optional[str]
    value: Any = "0"
    data: Optional[str] = "0x"
    method: Optional[ExecutionMethod] = None
    gas_limit: Optional[int] = None
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    parse_errors: List[str] = field(default_factory=list)   # Fields that could not be read

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TransactionDraft":
        """Read a draft without raising; unreadable fields are left unset and listed in ``parse_errors``."""
        errors: List[str] = []

        def read_int(key: str, label: str) -> Optional[int]:
            raw = payload.get(key)
            try:
                return _optional_int(raw)
            except (TypeError, ValueError):
                errors.append(f"Invalid {label}: {raw!r}")
                return None

        method = None
        raw_method = payload.get("method")
        if raw_method:
            try:
                method = ExecutionMethod(raw_method)
            except (TypeError, ValueError):
                errors.append(f"Invalid execution method: {raw_method!r}")

        return cls(
            from_address=payload.get("from"),
            to_address=payload.get("to"),
            value=payload.get("value") or "0",
            data=payload.get("data") or "0x",
            method=method,
            gas_limit=read_int("gasLimit", "gas limit"),
            gas_price=read_int("gasPrice", "gas price"),
            max_fee_per_gas=read_int("maxFeePerGas", "max fee per gas"),
            max_priority_fee_per_gas=read_int("maxPriorityFeePerGas", "max priority fee per gas"),
            parse_errors=errors,
        )

    def validation_view(self) -> Dict[str, Any]:
        return {
            "from": self.from_address,
            "to": self.to_address,
            "value": self.value,
            "data": self.data,
        }


@dataclass
class TransactionRequest:
    """A proposed on-chain action tracked by the lifecycle engine."""
    id: str
    from_address: str
    to_address: str
    value: int = 0
    data: str = "0x"
    method: ExecutionMethod = ExecutionMethod.SIMULATION
    nonce: Optional[int] = None

    gas_limit: Optional[int] = None
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None

    status: TransactionRequestStatus = TransactionRequestStatus.PENDING
    created_at: datetime = field(default_factory=_utcnow)
    expires_at: Optional[datetime] = None
    executed_at: Optional[datetime] = None

    hash: Optional[str] = None                  # Result handle once executed
    error: Optional[str] = None
    fingerprint: Optional[str] = None

    def __setattr__(self, name: str, value: Any) -> None:
        if name in _PROTECTED_FIELDS and self.__dict__.get("status") in TERMINAL_STATUSES:
            raise AttributeError(f"Cannot modify '{name}' on a finalized transaction")
        super().__setattr__(name, value)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or _utcnow()) > self.expires_at

    def to_tx_params(self) -> Dict[str, Any]:
        """Parameters handed to a signer or relayer."""
        params: Dict[str, Any] = {
            "to": self.to_address,
            "value": self.value,
            "data": self.data or "0x",
        }
        if self.gas_limit is not None:
            params["gas"] = self.gas_limit
        if self.max_fee_per_gas is not None and self.max_priority_fee_per_gas is not None:
            params["maxFeePerGas"] = self.max_fee_per_gas
            params["maxPriorityFeePerGas"] = self.max_priority_fee_per_gas
        elif self.gas_price is not None:
            params["gasPrice"] = self.gas_price
        if self.nonce is not None:
            params["nonce"] = self.nonce
        return params

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "from": self.from_address,
            "to": self.to_address,
            "value": str(self.value),
            "data": self.data,
            "nonce": self.nonce,
            "method": self.method.value,
            "gasLimit": self.gas_limit,
            "gasPrice": self.gas_price,
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            "status": self.status.value,
            "createdAt": _to_millis(self.created_at),
            "expiresAt": _to_millis(self.expires_at),
            "executedAt": _to_millis(self.executed_at),
            "hash": self.hash,
            "error": self.error,
        }


@dataclass(frozen=True)
class Approval:
    """One owner's vote on a request. Never mutated once recorded."""
    transaction_id: str
    approver: str
    approved: bool
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transactionId": self.transaction_id,
            "approver": self.approver,
            "approved": self.approved,
            "timestamp": _to_millis(self.timestamp),
        }


@dataclass
class PendingTransaction:
    """A live request together with its approval tally."""
    transaction: TransactionRequest
    approvals: List[Approval]
    approval_count: int
    required_approvals: Optional[int]     # None when the owner configuration is unreadable

    @property
    def can_execute(self) -> bool:
        if self.required_approvals is None:
            return False
        return self.approval_count >= self.required_approvals

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.transaction.id,
            "transaction": self.transaction.to_dict(),
            "approvals": [a.to_dict() for a in self.approvals],
            "approvalCount": self.approval_count,
            "requiredApprovals": self.required_approvals,
            "canExecute": self.can_execute,
        }


@dataclass
class ExecutionResult:
    """Outcome of one dispatch attempt."""
    method: ExecutionMethod
    success: bool
    hash: Optional[str] = None
    gas_used: Optional[int] = None
    error: Optional[str] = None
