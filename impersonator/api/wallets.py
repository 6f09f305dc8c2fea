from typing import Any, Dict, List

import httpx
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from ..core.validation import validate_network_id
from ..providers.rpc import RpcError
from ..providers.wallets import StaticWalletAuthorization

router = APIRouter(prefix="/wallets")


class WalletOwnersRequest(BaseModel):
    owners: List[str] = Field(..., min_length=1, description="Owner addresses")
    threshold: int = Field(..., ge=1, description="Approvals required to execute")


def _static_source(request: Request) -> StaticWalletAuthorization:
    source = getattr(request.app.state, "authorization", None)
    if not isinstance(source, StaticWalletAuthorization):
        raise HTTPException(status_code=409, detail="Owners are read from chain and cannot be set here")
    return source


async def _check_network(request: Request) -> None:
    """Refuse registration while the configured node is on an unsupported chain."""
    provider = getattr(request.app.state, "provider", None)
    if provider is None:
        return

    try:
        chain_id = await provider.get_chain_id()
    except (httpx.HTTPError, RpcError):
        raise HTTPException(status_code=503, detail="Network provider unavailable")

    checked = validate_network_id(chain_id)
    if not checked.valid:
        raise HTTPException(status_code=400, detail=checked.error)


@router.put("/{wallet_address}/owners")
async def set_wallet_owners(
    wallet_address: str,
    request: WalletOwnersRequest,
    http_request: Request,
) -> Dict[str, Any]:
    source = _static_source(http_request)
    await _check_network(http_request)
    try:
        auth = source.set_wallet(wallet_address, request.owners, request.threshold)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"success": True, "owners": auth.owners, "threshold": auth.threshold}


@router.get("/{wallet_address}/owners")
async def get_wallet_owners(wallet_address: str, http_request: Request) -> Dict[str, Any]:
    source = getattr(http_request.app.state, "authorization", None)
    if source is None:
        raise HTTPException(status_code=503, detail="Authorization source not configured")
    try:
        auth = await source.get_owners_and_threshold(wallet_address)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except RpcError:
        raise HTTPException(status_code=503, detail="Network provider unavailable")
    return {"success": True, "owners": auth.owners, "threshold": auth.threshold}
