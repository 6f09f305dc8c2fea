from typing import Any, Dict

import httpx
from fastapi import APIRouter, Request

from ..providers.rpc import RpcError

router = APIRouter()


@router.get("/healthz")
async def health_check(request: Request) -> Dict[str, Any]:
    """Health check that verifies the engine is mounted and the node answers"""

    engine = getattr(request.app.state, "engine", None)
    provider = getattr(request.app.state, "provider", None)

    if provider is None:
        provider_status: Dict[str, Any] = {"status": "unavailable"}
    else:
        try:
            chain_id = await provider.get_chain_id()
            provider_status = {"status": "healthy", "chainId": chain_id}
        except (httpx.HTTPError, RpcError) as exc:
            provider_status = {"status": "error", "error": str(exc)}

    healthy = engine is not None and provider_status["status"] in ("healthy", "unavailable")

    return {
        "status": "healthy" if healthy else "degraded",
        "engine": {
            "status": "ready" if engine is not None else "missing",
            "transactions": len(engine.list_transactions(include_expired=True)) if engine else 0,
        },
        "provider": provider_status,
    }
