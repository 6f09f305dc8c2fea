from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import health, transactions, wallets
from .config import settings
from .core.execution.executor import ExecutionDispatcher
from .core.execution.nonce_manager import NonceManager
from .core.lifecycle.engine import TransactionLifecycleEngine
from .core.validation import validate_address
from .middleware import RequestLoggingMiddleware
from .providers.base import NetworkProvider, WalletAuthorizationSource, WalletConnection
from .providers.rpc import JsonRpcProvider, NodeWalletConnection
from .providers.wallets import SafeOwnerSource, StaticWalletAuthorization


def build_authorization(provider: Optional[NetworkProvider]) -> WalletAuthorizationSource:
    """Owner source named by ``settings.owner_source``; 'safe' needs a provider."""
    if settings.owner_source == "safe":
        if provider is None:
            raise ValueError("owner_source 'safe' requires an RPC URL")
        return SafeOwnerSource(provider)
    return StaticWalletAuthorization()


def build_wallet_connection(
    provider: Optional[NetworkProvider],
    impersonated_address: Optional[str],
) -> Optional[WalletConnection]:
    """Node-backed signer for the impersonated account, if one is configured."""
    if provider is None or not impersonated_address:
        return None
    checked = validate_address(impersonated_address)
    if not checked.valid:
        raise ValueError(f"Invalid impersonated address: {checked.error}")
    return NodeWalletConnection(provider, checked.value)


def build_engine(
    provider: Optional[NetworkProvider],
    authorization: WalletAuthorizationSource,
    wallet_connection: Optional[WalletConnection] = None,
) -> TransactionLifecycleEngine:
    """Engine wired to ``provider`` for nonces, simulation, gas estimates and direct submission."""
    return TransactionLifecycleEngine(
        authorization=authorization,
        dispatcher=ExecutionDispatcher(provider=provider, wallet_connection=wallet_connection),
        nonce_manager=NonceManager(provider) if provider is not None else None,
    )


def create_app(
    engine: Optional[TransactionLifecycleEngine] = None,
    provider: Optional[NetworkProvider] = None,
    authorization: Optional[WalletAuthorizationSource] = None,
    impersonated_address: Optional[str] = None,
) -> FastAPI:
    if provider is None and engine is None and settings.rpc_url:
        provider = JsonRpcProvider(settings.rpc_url)
    if authorization is None:
        authorization = engine.authorization if engine is not None else build_authorization(provider)
    if engine is None:
        wallet_connection = build_wallet_connection(
            provider,
            impersonated_address or settings.impersonated_address,
        )
        engine = build_engine(provider, authorization, wallet_connection)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if isinstance(provider, JsonRpcProvider):
            await provider.close()

    app = FastAPI(
        title="Impersonator Authorization API",
        description="Multi-owner approval and dispatch for impersonated wallet transactions",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.bridge_host_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.state.engine = engine
    app.state.provider = provider
    app.state.authorization = authorization

    app.include_router(health.router, tags=["Health"])
    app.include_router(transactions.router, tags=["Transactions"])
    app.include_router(wallets.router, tags=["Wallets"])

    @app.get("/")
    async def root():
        """Root endpoint with basic info"""
        return {
            "name": "Impersonator Authorization API",
            "version": "0.1.0",
            "docs": "/docs",
            "health": "/healthz",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    from .logging_config import setup_logging

    setup_logging()
    uvicorn.run(
        "impersonator.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
