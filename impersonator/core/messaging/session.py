"""
Impersonation session: wires the bridge's command handlers to the engine.

One session per embedded app. The session knows which address is being
impersonated and which app URL is loaded; the app URL becomes the bridge's
allowed origin.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ...config import settings
from ...providers.base import NetworkProvider
from ...services.balance import get_wallet_balance, to_safe_balances
from ..errors import EngineError, ValidationError
from ..execution.models import ExecutionMethod, TransactionDraft
from ..lifecycle.engine import TransactionLifecycleEngine
from ..validation import validate_address, validate_transaction_request
from .communicator import MessageBridge
from .models import BridgeMethod, InboundMessage


logger = logging.getLogger(__name__)

# Anything that signs, broadcasts or rewrites node state must go through the engine.
BLOCKED_RPC_METHODS = frozenset({
    "eth_sendTransaction",
    "eth_sendRawTransaction",
    "eth_sign",
    "personal_sign",
    "eth_signTransaction",
    "eth_signTypedData",
    "eth_signTypedData_v3",
    "eth_signTypedData_v4",
})
BLOCKED_RPC_PREFIXES = ("anvil_", "hardhat_", "evm_", "wallet_")


def _request_error(message: str) -> ValidationError:
    return ValidationError([message], message=message)


@dataclass
class PendingSignature:
    """A sign request waiting for the host to answer it."""
    request_id: Any
    method: BridgeMethod
    payload: Any
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ImpersonationSession:
    """Registers handlers for every BridgeMethod on ``bridge``."""

    def __init__(
        self,
        bridge: MessageBridge,
        engine: TransactionLifecycleEngine,
        provider: NetworkProvider,
        address: str,
        *,
        app_url: Optional[str] = None,
        execution_method: Optional[ExecutionMethod] = None,
    ):
        checked = validate_address(address)
        if not checked.valid:
            raise ValueError(checked.error)

        self.bridge = bridge
        self.engine = engine
        self.provider = provider
        self.address = checked.value
        self.app_url: Optional[str] = None
        if execution_method is None and settings.bridge_execution_method:
            execution_method = ExecutionMethod(settings.bridge_execution_method)
        self.execution_method = execution_method
        self.pending_signatures: Dict[Any, PendingSignature] = {}

        if app_url:
            self.set_app_url(app_url)
        self.register_handlers()

    def set_app_url(self, app_url: str) -> None:
        self.bridge.set_allowed_origin(app_url)
        self.app_url = app_url

    def register_handlers(self) -> None:
        self.bridge.on(BridgeMethod.GET_SAFE_INFO, self.get_safe_info)
        self.bridge.on(BridgeMethod.GET_ENVIRONMENT_INFO, self.get_environment_info)
        self.bridge.on(BridgeMethod.GET_ENV_INFO, self.get_environment_info)
        self.bridge.on(BridgeMethod.RPC_CALL, self.rpc_call)
        self.bridge.on(BridgeMethod.SEND_TRANSACTIONS, self.send_transactions)
        self.bridge.on(BridgeMethod.SIGN_MESSAGE, self.sign_message)
        self.bridge.on(BridgeMethod.SIGN_TYPED_MESSAGE, self.sign_typed_message)
        self.bridge.on(BridgeMethod.GET_SAFE_BALANCES, self.get_safe_balances)

    # =========================================================================
    # Handlers
    # =========================================================================

    async def get_safe_info(self, message: InboundMessage) -> Dict[str, Any]:
        chain_id = await self.provider.get_chain_id()
        balance = await self.provider.get_balance(self.address)

        owners: List[str] = [self.address]
        threshold = 1
        try:
            auth = await self.engine.authorization.get_owners_and_threshold(self.address)
            owners, threshold = list(auth.owners), auth.threshold
        except (LookupError, ValueError) as e:
            logger.debug(f"No owner configuration for {self.address}: {e}")

        return {
            "safeAddress": self.address,
            "chainId": chain_id,
            "owners": owners,
            "threshold": threshold,
            "isReadOnly": False,
            "ethBalance": str(balance),
        }

    async def get_environment_info(self, message: InboundMessage) -> Dict[str, Any]:
        return {"origin": self.bridge.host_origin}

    async def rpc_call(self, message: InboundMessage) -> Any:
        method = message.params.get("call")
        params = message.params.get("params") or []

        if not isinstance(method, str) or not method:
            raise _request_error("Missing RPC method")
        if method in BLOCKED_RPC_METHODS or method.startswith(BLOCKED_RPC_PREFIXES):
            raise _request_error(f"RPC method {method} is not allowed")
        if not isinstance(params, list):
            raise _request_error("RPC params must be a list")

        return await self.provider.send(method, params)

    async def send_transactions(self, message: InboundMessage) -> Optional[Dict[str, Any]]:
        txs = message.params.get("txs")
        if not isinstance(txs, list) or not txs or not all(isinstance(t, dict) for t in txs):
            logger.error(f"Invalid transaction batch from app (request {message.id})")
            return None

        checksummed = []
        for tx in txs:
            to_check = validate_address(tx.get("to"))
            if not to_check.valid:
                logger.error(f"Invalid transaction from app: 'to' {to_check.error}")
                return None
            checksummed.append({**tx, "to": to_check.value})

        first = checksummed[0]
        candidate = {
            "from": self.address,
            "to": first["to"],
            "value": first.get("value") or "0",
            "data": first.get("data") or "0x",
        }

        validation = validate_transaction_request(candidate)
        if not validation.valid:
            logger.error(f"Invalid transaction from app: {validation.errors}")
            return None

        draft = TransactionDraft.from_dict(candidate)
        draft.method = self.execution_method
        try:
            tx = await self.engine.create(draft)
        except EngineError as e:
            logger.error(f"Failed to create transaction from app: {e.message}")
            return None

        return {"safeTxHash": tx.id}

    async def sign_message(self, message: InboundMessage) -> None:
        self._queue_signature(message, message.params.get("message"))

    async def sign_typed_message(self, message: InboundMessage) -> None:
        self._queue_signature(message, message.params.get("typedData"))

    async def get_safe_balances(self, message: InboundMessage) -> List[Dict[str, Any]]:
        try:
            chain_id = await self.provider.get_chain_id()
            balance = await get_wallet_balance(self.address, chain_id, self.provider)
        except Exception as e:
            logger.error(f"Failed to get balances for {self.address}: {e}")
            return []
        return to_safe_balances(balance)

    # =========================================================================
    # Signature requests
    # =========================================================================

    def _queue_signature(self, message: InboundMessage, payload: Any) -> None:
        self.pending_signatures[message.id] = PendingSignature(
            request_id=message.id,
            method=message.method,
            payload=payload,
        )
        logger.info(f"Queued {message.method.value} request {message.id}")

    def respond_to_signature(self, request_id: Any, signature: str) -> bool:
        pending = self.pending_signatures.pop(request_id, None)
        if pending is None:
            raise KeyError(f"No pending signature request {request_id}")
        return self.bridge.send({"signature": signature}, request_id)

    def reject_signature(self, request_id: Any, reason: str = "User rejected signature request") -> bool:
        pending = self.pending_signatures.pop(request_id, None)
        if pending is None:
            raise KeyError(f"No pending signature request {request_id}")
        return self.bridge.send(reason, request_id, error=True)
