"""
Transaction Execution Layer

Provides the pieces that turn an approved request into a result handle:
- ExecutionDispatcher: routes a request to simulation, direct or relayer execution
- NonceManager: issues per-address nonces reconciled with the network
- Relayer registry: default relay endpoints and the HTTP submit call

Usage:
    from impersonator.core.execution import ExecutionDispatcher, NonceManager

    dispatcher = ExecutionDispatcher(provider=provider, wallet_connection=wallet)
    result = await dispatcher.dispatch(request)
"""

from .models import (
    ExecutionMethod,
    TransactionRequestStatus,
    TERMINAL_STATUSES,
    GasEstimate,
    TransactionDraft,
    TransactionRequest,
    Approval,
    PendingTransaction,
    ExecutionResult,
)

from .nonce_manager import (
    NonceManager,
    NonceState,
)

from .relayers import (
    RelayerService,
    DEFAULT_RELAYERS,
    select_relayer,
    submit_to_relayer,
    get_relayer_status,
)

from .executor import (
    ExecutionDispatcher,
    revalidate,
)

__all__ = [
    # Models
    "ExecutionMethod",
    "TransactionRequestStatus",
    "TERMINAL_STATUSES",
    "GasEstimate",
    "TransactionDraft",
    "TransactionRequest",
    "Approval",
    "PendingTransaction",
    "ExecutionResult",
    # Nonce Manager
    "NonceManager",
    "NonceState",
    # Relayers
    "RelayerService",
    "DEFAULT_RELAYERS",
    "select_relayer",
    "submit_to_relayer",
    "get_relayer_status",
    # Dispatcher
    "ExecutionDispatcher",
    "revalidate",
]
