from typing import Any, Dict, NoReturn, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from ..core.errors import (
    DispatchFailure,
    EngineError,
    ErrorCategory,
    InvalidApprover,
    ValidationError,
)
from ..core.execution.models import ExecutionMethod, TransactionDraft
from ..core.lifecycle.engine import TransactionLifecycleEngine

router = APIRouter(prefix="/transactions")


_STATUS_BY_CATEGORY = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.RATE_LIMIT: 429,
    ErrorCategory.DUPLICATE: 409,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.AUTHORIZATION: 403,
    ErrorCategory.CONCURRENCY: 409,
    ErrorCategory.STATE: 409,
    ErrorCategory.DISPATCH: 502,
}


class CreateTransactionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_address: str = Field(..., alias="from", description="Sending wallet")
    to: str = Field(..., description="Recipient or contract address")
    value: Union[str, int] = Field("0", description="Amount in wei")
    data: str = Field("0x", description="Hex-encoded calldata")
    method: Optional[ExecutionMethod] = Field(None, description="Execution method; server default when omitted")
    gasLimit: Optional[Union[str, int]] = None
    gasPrice: Optional[Union[str, int]] = None
    maxFeePerGas: Optional[Union[str, int]] = None
    maxPriorityFeePerGas: Optional[Union[str, int]] = None

    def to_draft(self) -> TransactionDraft:
        payload = self.model_dump(by_alias=True, exclude_none=True)
        if self.method is not None:
            payload["method"] = self.method.value
        return TransactionDraft.from_dict(payload)


class ApproverRequest(BaseModel):
    approver: str = Field(..., description="Owner address casting the vote")


def get_engine(request: Request) -> TransactionLifecycleEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Transaction engine not configured")
    return engine


def _raise_http(exc: EngineError) -> NoReturn:
    if isinstance(exc, InvalidApprover):
        status = 400
    else:
        status = _STATUS_BY_CATEGORY.get(exc.category, 500)

    detail: Dict[str, Any] = {"error": exc.message, "category": exc.category.value}
    if isinstance(exc, ValidationError):
        detail["errors"] = exc.errors
    raise HTTPException(status_code=status, detail=detail)


def _with_approvals(engine: TransactionLifecycleEngine, transaction_id: str) -> Dict[str, Any]:
    tx = engine.get(transaction_id)
    payload = tx.to_dict()
    payload["approvals"] = [a.to_dict() for a in engine.get_approvals(transaction_id)]
    return payload


@router.get("")
async def list_transactions(
    include_expired: bool = False,
    engine: TransactionLifecycleEngine = Depends(get_engine),
) -> Dict[str, Any]:
    txs = engine.list_transactions(include_expired=include_expired)
    return {"success": True, "transactions": [tx.to_dict() for tx in txs]}


@router.get("/pending")
async def pending_transactions(
    engine: TransactionLifecycleEngine = Depends(get_engine),
) -> Dict[str, Any]:
    pending = await engine.pending_transactions()
    return {"success": True, "pending": [p.to_dict() for p in pending]}


@router.post("/estimate-gas")
async def estimate_gas(
    request: CreateTransactionRequest,
    engine: TransactionLifecycleEngine = Depends(get_engine),
) -> Dict[str, Any]:
    try:
        estimate = await engine.estimate_gas(request.to_draft())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except EngineError as exc:
        _raise_http(exc)
    return {"success": True, "estimate": estimate.to_dict()}


@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    engine: TransactionLifecycleEngine = Depends(get_engine),
) -> Dict[str, Any]:
    if engine.get(transaction_id) is None:
        raise HTTPException(status_code=404, detail=f"Transaction not found: {transaction_id}")
    return {"success": True, "transaction": _with_approvals(engine, transaction_id)}


@router.post("")
async def create_transaction(
    request: CreateTransactionRequest,
    engine: TransactionLifecycleEngine = Depends(get_engine),
) -> Dict[str, Any]:
    try:
        tx = await engine.create(request.to_draft())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except EngineError as exc:
        _raise_http(exc)
    return {"success": True, "transaction": tx.to_dict()}


@router.post("/{transaction_id}/approve")
async def approve_transaction(
    transaction_id: str,
    request: ApproverRequest,
    engine: TransactionLifecycleEngine = Depends(get_engine),
) -> Dict[str, Any]:
    try:
        await engine.approve(transaction_id, request.approver)
    except EngineError as exc:
        _raise_http(exc)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"success": True, "transaction": _with_approvals(engine, transaction_id)}


@router.post("/{transaction_id}/reject")
async def reject_transaction(
    transaction_id: str,
    request: ApproverRequest,
    engine: TransactionLifecycleEngine = Depends(get_engine),
) -> Dict[str, Any]:
    try:
        await engine.reject(transaction_id, request.approver)
    except EngineError as exc:
        _raise_http(exc)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"success": True, "transaction": _with_approvals(engine, transaction_id)}


@router.post("/{transaction_id}/execute")
async def execute_transaction(
    transaction_id: str,
    engine: TransactionLifecycleEngine = Depends(get_engine),
) -> Dict[str, Any]:
    try:
        tx = await engine.execute(transaction_id)
    except DispatchFailure as exc:
        raise HTTPException(
            status_code=502,
            detail={
                "error": exc.message,
                "category": exc.category.value,
                "transaction": engine.get(transaction_id).to_dict(),
            },
        )
    except EngineError as exc:
        _raise_http(exc)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"success": True, "transaction": tx.to_dict()}
