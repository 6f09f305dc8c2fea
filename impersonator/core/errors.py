"""
Error Classification

Typed failures raised by the authorization engine and its dispatcher.
Each error carries a category and whether the caller can recover locally
(retry, back off, fix input) or the transaction is finished.
"""

from enum import Enum
from typing import List, Optional


class ErrorCategory(str, Enum):
    """Categories of engine errors."""

    VALIDATION = "validation"           # Malformed or out-of-bounds input
    RATE_LIMIT = "rate_limit"           # Sender is over its admission window
    DUPLICATE = "duplicate"             # Same logical action already pending
    NOT_FOUND = "not_found"             # Unknown transaction id
    AUTHORIZATION = "authorization"     # Approver missing or not an owner
    CONCURRENCY = "concurrency"         # Another approval holds the lock
    STATE = "state"                     # Transaction not in an executable state
    DISPATCH = "dispatch"               # Network, relayer or signer failure


class EngineError(Exception):
    """Base class for every error the engine raises to its callers."""

    category: ErrorCategory = ErrorCategory.STATE
    recoverable: bool = True

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(EngineError):
    """Input failed one or more validation checks."""

    category = ErrorCategory.VALIDATION

    def __init__(self, errors: List[str], message: Optional[str] = None):
        self.errors = list(errors)
        super().__init__(message or f"Invalid transaction: {', '.join(self.errors)}")


class RateLimitExceeded(EngineError):
    """Sender exceeded the sliding-window admission limit."""

    category = ErrorCategory.RATE_LIMIT

    def __init__(self, key: str, limit: int, window_ms: int):
        self.key = key
        self.limit = limit
        self.window_ms = window_ms
        super().__init__(
            "Rate limit exceeded. Please wait before creating another transaction."
        )


class DuplicateTransaction(EngineError):
    """A live request with the same fingerprint already exists."""

    category = ErrorCategory.DUPLICATE

    def __init__(self, fingerprint: str, existing_id: str):
        self.fingerprint = fingerprint
        self.existing_id = existing_id
        super().__init__("Duplicate transaction detected")


class TransactionNotFound(EngineError):
    category = ErrorCategory.NOT_FOUND

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class InvalidApprover(EngineError):
    category = ErrorCategory.AUTHORIZATION

    def __init__(self, reason: str):
        super().__init__(reason or "Invalid approver address")


class Unauthorized(EngineError):
    """Approver is not in the wallet's current owner set."""

    category = ErrorCategory.AUTHORIZATION

    def __init__(self, approver: str):
        self.approver = approver
        super().__init__("Unauthorized: Approver is not a wallet owner")


class ApprovalInProgress(EngineError):
    """Transient: another approval for the same transaction holds the lock."""

    category = ErrorCategory.CONCURRENCY

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__("Approval already in progress for this transaction")


class NotApproved(EngineError):
    category = ErrorCategory.STATE
    recoverable = False

    def __init__(self, transaction_id: str, status: str):
        self.transaction_id = transaction_id
        self.status = status
        super().__init__(f"Transaction {transaction_id} is not approved (status: {status})")


class TransactionExpired(EngineError):
    category = ErrorCategory.STATE
    recoverable = False

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__("Transaction has expired")


class InsufficientApprovals(EngineError):
    category = ErrorCategory.STATE
    recoverable = False

    def __init__(self, approvals: int, threshold: int):
        self.approvals = approvals
        self.threshold = threshold
        super().__init__(f"Insufficient approvals: {approvals}/{threshold}")


class InvalidStateTransition(EngineError):
    """Attempted to move a request along an edge the lifecycle does not allow."""

    category = ErrorCategory.STATE
    recoverable = False

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition from {from_status} to {to_status}")


class DispatchFailure(EngineError):
    """Execution strategy failed. Only the message text is ever recorded."""

    category = ErrorCategory.DISPATCH


class RelayerUnavailable(DispatchFailure):
    def __init__(self, message: str = "No enabled relayer available"):
        super().__init__(message)


class SignerUnavailable(DispatchFailure):
    def __init__(self, message: str = "No signer available for direct execution"):
        super().__init__(message)


class GasEstimationError(DispatchFailure):
    pass
