"""
Transaction Lifecycle Engine

Owns every transaction request and its approval records, and moves requests
through PENDING -> APPROVED -> EXECUTING -> SUCCESS/FAILED, with REJECTED as
an owner veto. Admission (validation, rate limit, dedup) happens in create;
authorization is re-read from the wallet's owner source on every vote and
again at execution time.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Union

from eth_utils import keccak

from ...config import settings
from ...providers.base import WalletAuthorization, WalletAuthorizationSource
from ...providers.rpc import RpcError
from ..errors import (
    ApprovalInProgress,
    DispatchFailure,
    DuplicateTransaction,
    InsufficientApprovals,
    InvalidApprover,
    InvalidStateTransition,
    NotApproved,
    RateLimitExceeded,
    TransactionExpired,
    TransactionNotFound,
    Unauthorized,
    ValidationError,
)
from ..execution.executor import ExecutionDispatcher
from ..execution.models import (
    Approval,
    ExecutionMethod,
    GasEstimate,
    PendingTransaction,
    TransactionDraft,
    TransactionRequest,
    TransactionRequestStatus as Status,
)
from ..execution.nonce_manager import NonceManager
from ..rate_limiter import RateLimiter
from ..validation import (
    generate_secure_id,
    validate_address,
    validate_gas_limit,
    validate_gas_price,
    validate_transaction_request,
    validate_value,
)


logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_fingerprint(
    from_address: str,
    to_address: str,
    value: int,
    data: str,
    nonce: Optional[int],
) -> str:
    """Deterministic hash of the fields that identify one logical action."""
    material = "|".join([
        from_address.lower(),
        to_address.lower(),
        str(value),
        (data or "0x").lower(),
        "" if nonce is None else str(nonce),
    ])
    return "0x" + keccak(text=material).hex()


class TransactionLifecycleEngine:
    """
    Manages transaction requests for the wallets an authorization source knows.

    Features:
    - Validates transitions against the allowed transition map
    - Per-transaction approval lock held for a short grace period
    - Fingerprint dedup over live requests
    - Lazy expiration checked at execute time
    """

    TRANSITIONS: Dict[Status, Set[Status]] = {
        Status.PENDING: {
            Status.APPROVED,
            Status.EXECUTING,  # Single-owner fast path
            Status.REJECTED,
            Status.FAILED,     # Expired or approvals no longer valid
        },
        Status.APPROVED: {
            Status.EXECUTING,
            Status.REJECTED,   # Veto after threshold
            Status.FAILED,
        },
        Status.EXECUTING: {
            Status.SUCCESS,
            Status.FAILED,
        },
        Status.SUCCESS: set(),
        Status.FAILED: set(),
        Status.REJECTED: set(),
    }

    def __init__(
        self,
        authorization: WalletAuthorizationSource,
        dispatcher: Optional[ExecutionDispatcher] = None,
        nonce_manager: Optional[NonceManager] = None,
        rate_limiter: Optional[RateLimiter] = None,
        *,
        ttl_ms: Optional[int] = None,
        approval_lock_grace_ms: Optional[int] = None,
        default_method: Optional[Union[str, ExecutionMethod]] = None,
        clock: Clock = _utcnow,
    ):
        self.authorization = authorization
        self.dispatcher = dispatcher or ExecutionDispatcher()
        self.nonce_manager = nonce_manager
        self.rate_limiter = rate_limiter or RateLimiter()
        self.ttl_ms = ttl_ms if ttl_ms is not None else settings.transaction_expiration_ms
        self.approval_lock_grace_ms = (
            approval_lock_grace_ms
            if approval_lock_grace_ms is not None
            else settings.approval_lock_grace_ms
        )
        self.default_method = ExecutionMethod(default_method or settings.default_execution_method)
        self._clock = clock

        self._transactions: Dict[str, TransactionRequest] = {}
        self._approvals: Dict[str, List[Approval]] = {}
        self._approval_locks: Set[str] = set()

    # =========================================================================
    # State transitions
    # =========================================================================

    def can_transition(self, from_status: Status, to_status: Status) -> bool:
        return to_status in self.TRANSITIONS.get(from_status, set())

    def _transition(self, tx: TransactionRequest, to_status: Status) -> None:
        if not self.can_transition(tx.status, to_status):
            raise InvalidStateTransition(tx.status.value, to_status.value)

        logger.info(f"Transaction {tx.id}: {tx.status.value} -> {to_status.value}")
        tx.status = to_status

    def _fail(self, tx: TransactionRequest, reason: str) -> None:
        tx.error = reason
        self._transition(tx, Status.FAILED)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require(self, transaction_id: str) -> TransactionRequest:
        tx = self._transactions.get(transaction_id)
        if tx is None:
            raise TransactionNotFound(transaction_id)
        return tx

    async def _authorization_for(self, tx: TransactionRequest) -> WalletAuthorization:
        return await self.authorization.get_owners_and_threshold(tx.from_address)

    def _validate_approver(self, approver: Any) -> str:
        checked = validate_address(approver)
        if not checked.valid:
            raise InvalidApprover(checked.error)
        return checked.value

    def _find_vote(self, transaction_id: str, approver: str, approved: bool) -> Optional[Approval]:
        for record in self._approvals.get(transaction_id, []):
            if record.approved == approved and record.approver.lower() == approver.lower():
                return record
        return None

    def _count_approvals(self, transaction_id: str, auth: WalletAuthorization) -> int:
        """Distinct approving votes from owners in the current owner set."""
        approvers = {
            record.approver.lower()
            for record in self._approvals.get(transaction_id, [])
            if record.approved and auth.is_owner(record.approver)
        }
        return len(approvers)

    def _release_approval_lock(self, transaction_id: str) -> None:
        if self.approval_lock_grace_ms <= 0:
            self._approval_locks.discard(transaction_id)
            return

        loop = asyncio.get_running_loop()
        loop.call_later(
            self.approval_lock_grace_ms / 1000,
            self._approval_locks.discard,
            transaction_id,
        )

    def _validate_draft(self, draft: TransactionDraft) -> None:
        validation = validate_transaction_request(draft.validation_view())
        errors = list(validation.errors) + list(draft.parse_errors)

        if draft.gas_limit is not None:
            result = validate_gas_limit(draft.gas_limit)
            if not result.valid:
                errors.append(f"Invalid gas limit: {result.error}")

        if draft.gas_price is not None:
            result = validate_gas_price(draft.gas_price)
            if not result.valid:
                errors.append(f"Invalid gas price: {result.error}")

        if errors:
            raise ValidationError(errors)

    # =========================================================================
    # Commands
    # =========================================================================

    async def create(self, draft: Union[TransactionDraft, Mapping[str, Any]]) -> TransactionRequest:
        """
        Admit a new request.

        Raises:
            ValidationError: one or more fields invalid
            RateLimitExceeded: sender over its admission window
            DuplicateTransaction: a live request has the same fingerprint
        """
        if not isinstance(draft, TransactionDraft):
            draft = TransactionDraft.from_dict(draft)

        self._validate_draft(draft)

        sender = validate_address(draft.from_address).value
        recipient = validate_address(draft.to_address).value
        value = validate_value(draft.value).value
        data = draft.data or "0x"

        if not self.rate_limiter.check_limit(sender.lower()):
            logger.warning(f"Rate limit exceeded for {sender}")
            raise RateLimitExceeded(sender, self.rate_limiter.max_requests, self.rate_limiter.window_ms)

        nonce: Optional[int] = None
        if self.nonce_manager is not None:
            try:
                nonce = await self.nonce_manager.get_next_nonce(sender)
            except Exception as e:
                logger.warning(f"Nonce allocation failed for {sender}, continuing without nonce: {e}")

        fingerprint = compute_fingerprint(sender, recipient, value, data, nonce)
        now = self._clock()

        for existing in self._transactions.values():
            if (
                existing.fingerprint == fingerprint
                and not existing.is_terminal
                and not existing.is_expired(now)
            ):
                logger.warning(f"Duplicate of {existing.id} rejected")
                raise DuplicateTransaction(fingerprint, existing.id)

        tx = TransactionRequest(
            id=f"tx_{int(now.timestamp() * 1000)}_{generate_secure_id()}",
            from_address=sender,
            to_address=recipient,
            value=value,
            data=data,
            method=draft.method or self.default_method,
            nonce=nonce,
            gas_limit=draft.gas_limit,
            gas_price=draft.gas_price,
            max_fee_per_gas=draft.max_fee_per_gas,
            max_priority_fee_per_gas=draft.max_priority_fee_per_gas,
            status=Status.PENDING,
            created_at=now,
            expires_at=now + timedelta(milliseconds=self.ttl_ms),
            fingerprint=fingerprint,
        )
        self._transactions[tx.id] = tx
        self._approvals[tx.id] = []

        logger.info(f"Created transaction {tx.id} ({tx.method.value}) from {sender} to {recipient}")
        return tx

    async def approve(self, transaction_id: str, approver: str) -> TransactionRequest:
        """
        Record an approving vote.

        Idempotent per approver. Moves PENDING to APPROVED in the same step
        that records the vote which reaches the threshold.

        Raises:
            TransactionNotFound, InvalidApprover, Unauthorized,
            ApprovalInProgress, InvalidStateTransition
        """
        tx = self._require(transaction_id)
        approver = self._validate_approver(approver)

        auth = await self._authorization_for(tx)
        if not auth.is_owner(approver):
            raise Unauthorized(approver)

        if transaction_id in self._approval_locks:
            raise ApprovalInProgress(transaction_id)

        self._approval_locks.add(transaction_id)
        try:
            if tx.status not in (Status.PENDING, Status.APPROVED):
                raise InvalidStateTransition(tx.status.value, Status.APPROVED.value)

            if self._find_vote(transaction_id, approver, approved=True) is not None:
                logger.debug(f"{approver} already approved {transaction_id}")
                return tx

            self._approvals[transaction_id].append(
                Approval(
                    transaction_id=transaction_id,
                    approver=approver,
                    approved=True,
                    timestamp=self._clock(),
                )
            )

            count = self._count_approvals(transaction_id, auth)
            logger.info(f"Approval {count}/{auth.threshold} for {transaction_id} from {approver}")

            if tx.status == Status.PENDING and count >= auth.threshold:
                self._transition(tx, Status.APPROVED)

            return tx
        finally:
            self._release_approval_lock(transaction_id)

    async def reject(self, transaction_id: str, approver: str) -> TransactionRequest:
        """
        Veto a request. Any single current owner is enough.

        Raises:
            TransactionNotFound, InvalidApprover, Unauthorized,
            InvalidStateTransition (request already executing or finished)
        """
        tx = self._require(transaction_id)
        approver = self._validate_approver(approver)

        auth = await self._authorization_for(tx)
        if not auth.is_owner(approver):
            raise Unauthorized(approver)

        if tx.status != Status.REJECTED and not self.can_transition(tx.status, Status.REJECTED):
            raise InvalidStateTransition(tx.status.value, Status.REJECTED.value)

        if self._find_vote(transaction_id, approver, approved=False) is None:
            self._approvals[transaction_id].append(
                Approval(
                    transaction_id=transaction_id,
                    approver=approver,
                    approved=False,
                    timestamp=self._clock(),
                )
            )

        if tx.status != Status.REJECTED:
            self._transition(tx, Status.REJECTED)
            logger.info(f"Transaction {transaction_id} rejected by {approver}")

        return tx

    async def execute(self, transaction_id: str) -> TransactionRequest:
        """
        Dispatch an approved request and record the outcome.

        Raises:
            TransactionNotFound, NotApproved, TransactionExpired,
            InsufficientApprovals, DispatchFailure
        """
        tx = self._require(transaction_id)

        if tx.is_terminal or tx.status == Status.EXECUTING:
            raise NotApproved(transaction_id, tx.status.value)

        if tx.is_expired(self._clock()):
            self._fail(tx, "Transaction expired")
            raise TransactionExpired(transaction_id)

        auth = await self._authorization_for(tx)

        # Status may have moved while the owner set was being read.
        fast_path = tx.status == Status.PENDING and auth.threshold == 1
        if tx.status != Status.APPROVED and not fast_path:
            raise NotApproved(transaction_id, tx.status.value)

        if not fast_path:
            count = self._count_approvals(transaction_id, auth)
            if count < auth.threshold:
                error = InsufficientApprovals(count, auth.threshold)
                self._fail(tx, error.message)
                raise error

        self._transition(tx, Status.EXECUTING)

        try:
            result = await self.dispatcher.dispatch(tx)
        except DispatchFailure as e:
            self._fail(tx, e.message)
            logger.error(f"Transaction {transaction_id} failed: {e.message}")
            raise

        tx.hash = result.hash
        tx.executed_at = self._clock()
        self._transition(tx, Status.SUCCESS)

        if tx.method == ExecutionMethod.DIRECT_ONCHAIN and self.nonce_manager is not None:
            try:
                await self.nonce_manager.refresh_nonce(tx.from_address)
            except Exception as e:
                logger.warning(f"Nonce refresh failed for {tx.from_address}: {e}")

        return tx

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, transaction_id: str) -> Optional[TransactionRequest]:
        return self._transactions.get(transaction_id)

    def list_transactions(self, include_expired: bool = False) -> List[TransactionRequest]:
        """All requests, oldest first. Expired non-terminal requests are hidden by default."""
        if include_expired:
            return list(self._transactions.values())

        now = self._clock()
        return [
            tx for tx in self._transactions.values()
            if tx.is_terminal or not tx.is_expired(now)
        ]

    def get_approvals(self, transaction_id: str) -> List[Approval]:
        self._require(transaction_id)
        return list(self._approvals.get(transaction_id, []))

    async def pending_transactions(self) -> List[PendingTransaction]:
        """
        Live PENDING/APPROVED requests with their tally against the current threshold.

        A request whose wallet has no readable owner configuration is still
        listed, with ``required_approvals`` None, so one unknown sender does
        not hide the rest.
        """
        now = self._clock()
        pending: List[PendingTransaction] = []

        for tx in list(self._transactions.values()):
            if tx.status not in (Status.PENDING, Status.APPROVED) or tx.is_expired(now):
                continue

            approvals = [a for a in self._approvals.get(tx.id, []) if a.approved]
            try:
                auth = await self._authorization_for(tx)
            except (LookupError, ValueError, RpcError) as e:
                logger.warning(f"No owner configuration for {tx.id} ({tx.from_address}): {e}")
                count, required = len({a.approver.lower() for a in approvals}), None
            else:
                count, required = self._count_approvals(tx.id, auth), auth.threshold

            pending.append(
                PendingTransaction(
                    transaction=tx,
                    approvals=approvals,
                    approval_count=count,
                    required_approvals=required,
                )
            )

        return pending

    async def estimate_gas(self, draft: Union[TransactionDraft, Mapping[str, Any]]) -> GasEstimate:
        """Gas limit and fee snapshot for a draft, without creating a request."""
        if not isinstance(draft, TransactionDraft):
            draft = TransactionDraft.from_dict(draft)

        self._validate_draft(draft)

        gas_limit = await self.dispatcher.estimate_gas({
            "from": validate_address(draft.from_address).value,
            "to": validate_address(draft.to_address).value,
            "value": validate_value(draft.value).value,
            "data": draft.data or "0x",
        })

        fee_data = await asyncio.wait_for(
            self.dispatcher.provider.get_fee_data(),
            timeout=self.dispatcher.gas_estimation_timeout_s,
        )

        gas_price = fee_data.gas_price or 0
        unit_cost = fee_data.max_fee_per_gas or gas_price
        return GasEstimate(
            gas_limit=gas_limit,
            gas_price_wei=gas_price,
            max_fee_per_gas=fee_data.max_fee_per_gas,
            max_priority_fee_per_gas=fee_data.max_priority_fee_per_gas,
            estimated_cost_wei=gas_limit * unit_cost,
        )
