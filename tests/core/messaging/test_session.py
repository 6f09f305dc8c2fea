"""
Tests for ImpersonationSession command handlers, driven through the bridge.
"""

from types import SimpleNamespace

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock

from impersonator.config import settings
from impersonator.core.execution.models import ExecutionResult, ExecutionMethod, TransactionRequestStatus
from impersonator.core.lifecycle.engine import TransactionLifecycleEngine
from impersonator.core.messaging.communicator import MessageBridge
from impersonator.core.messaging.models import MessageEvent
from impersonator.core.messaging.session import ImpersonationSession
from impersonator.providers.rpc import JsonRpcProvider
from impersonator.providers.wallets import StaticWalletAuthorization


WALLET = "0x9999999999999999999999999999999999999999"
RECIPIENT = "0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed"
OWNER_A = "0x1000000000000000000000000000000000000001"
OWNER_B = "0x1000000000000000000000000000000000000002"
APP_URL = "https://app.example.com/swap"
APP_ORIGIN = "https://app.example.com"


class FakeWindow:
    def __init__(self):
        self.posted = []

    def post_message(self, message, target_origin):
        self.posted.append((message, target_origin))


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def window() -> FakeWindow:
    return FakeWindow()


@pytest.fixture
def provider() -> MagicMock:
    mock = MagicMock()
    mock.get_chain_id = AsyncMock(return_value=1)
    mock.get_balance = AsyncMock(return_value=10**18)
    mock.send = AsyncMock(return_value="0x10")
    mock.call = AsyncMock(side_effect=RuntimeError("no token contracts here"))
    return mock


@pytest.fixture
def engine() -> TransactionLifecycleEngine:
    authorization = StaticWalletAuthorization()
    authorization.set_wallet(WALLET, [OWNER_A, OWNER_B], threshold=2)
    dispatcher = MagicMock()
    dispatcher.dispatch = AsyncMock(
        return_value=ExecutionResult(method=ExecutionMethod.SIMULATION, success=True, hash="0x1")
    )
    return TransactionLifecycleEngine(
        authorization=authorization,
        dispatcher=dispatcher,
        approval_lock_grace_ms=0,
    )


@pytest.fixture
def session(window, engine, provider) -> ImpersonationSession:
    bridge = MessageBridge(SimpleNamespace(content_window=window), version="1.0.0")
    return ImpersonationSession(bridge, engine, provider, WALLET, app_url=APP_URL)


def incoming(window, method, params=None, msg_id=1) -> MessageEvent:
    return MessageEvent(
        data={"id": msg_id, "method": method, "params": params or {}},
        origin=APP_ORIGIN,
        source=window,
    )


# =============================================================================
# Transactions
# =============================================================================

@pytest.mark.asyncio
async def test_send_transactions_creates_pending_request(session, window, engine):
    await session.bridge.handle_incoming_message(
        incoming(window, "sendTransactions", {"txs": [{"to": RECIPIENT, "value": "5", "data": "0x"}]})
    )

    [tx] = engine.list_transactions()
    assert tx.status == TransactionRequestStatus.PENDING
    assert tx.from_address == WALLET
    assert tx.to_address == "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
    assert tx.value == 5

    message, target = window.posted[0]
    assert message["success"] is True
    assert message["data"] == {"safeTxHash": tx.id}
    assert target == APP_ORIGIN


@pytest.mark.asyncio
@pytest.mark.parametrize("params", [
    {"txs": [{"to": "0xnothex", "value": "1"}]},
    {"txs": [{"to": RECIPIENT, "value": "-1"}]},
    {"txs": []},
    {},
])
async def test_invalid_send_transactions_is_silent(session, window, engine, params):
    await session.bridge.handle_incoming_message(incoming(window, "sendTransactions", params))

    assert engine.list_transactions() == []
    assert window.posted == []


@pytest.mark.asyncio
async def test_duplicate_send_is_silent(session, window, engine):
    params = {"txs": [{"to": RECIPIENT, "value": "5"}]}
    await session.bridge.handle_incoming_message(incoming(window, "sendTransactions", params, msg_id=1))
    await session.bridge.handle_incoming_message(incoming(window, "sendTransactions", params, msg_id=2))

    assert len(engine.list_transactions()) == 1
    assert len(window.posted) == 1


@pytest.mark.asyncio
async def test_configured_bridge_method_applies_to_app_requests(window, engine, provider, monkeypatch):
    monkeypatch.setattr(settings, "bridge_execution_method", "DIRECT_ONCHAIN")
    bridge = MessageBridge(SimpleNamespace(content_window=window), version="1.0.0")
    session = ImpersonationSession(bridge, engine, provider, WALLET, app_url=APP_URL)

    await session.bridge.handle_incoming_message(
        incoming(window, "sendTransactions", {"txs": [{"to": RECIPIENT, "value": "5"}]})
    )

    [tx] = engine.list_transactions()
    assert tx.method == ExecutionMethod.DIRECT_ONCHAIN


@pytest.mark.asyncio
async def test_app_requests_use_engine_default_when_unconfigured(session, window, engine):
    await session.bridge.handle_incoming_message(
        incoming(window, "sendTransactions", {"txs": [{"to": RECIPIENT, "value": "5"}]})
    )

    [tx] = engine.list_transactions()
    assert tx.method == engine.default_method


# =============================================================================
# RPC pass-through
# =============================================================================

@pytest.mark.asyncio
async def test_rpc_call_passes_through(session, window, provider):
    await session.bridge.handle_incoming_message(
        incoming(window, "rpcCall", {"call": "eth_blockNumber", "params": []})
    )

    provider.send.assert_awaited_once_with("eth_blockNumber", [])
    message, _ = window.posted[0]
    assert message["data"] == "0x10"


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["eth_sendTransaction", "personal_sign", "hardhat_impersonateAccount"])
async def test_rpc_call_refuses_signing_and_node_control(session, window, provider, method):
    await session.bridge.handle_incoming_message(
        incoming(window, "rpcCall", {"call": method, "params": []})
    )

    provider.send.assert_not_awaited()
    message, _ = window.posted[0]
    assert message["success"] is False
    assert "not allowed" in message["error"]


@pytest.mark.asyncio
async def test_rpc_call_failure_does_not_reveal_endpoint(window, engine):
    node = JsonRpcProvider(
        "https://eth-mainnet.example.com/v2/SECRET_API_KEY",
        transport=httpx.MockTransport(lambda request: httpx.Response(401)),
    )
    bridge = MessageBridge(SimpleNamespace(content_window=window), version="1.0.0")
    session = ImpersonationSession(bridge, engine, node, WALLET, app_url=APP_URL)

    await session.bridge.handle_incoming_message(
        incoming(window, "rpcCall", {"call": "eth_blockNumber", "params": []})
    )

    message, _ = window.posted[0]
    assert message["success"] is False
    assert message["error"] == "RPC error (eth_blockNumber): HTTP 401"
    assert "SECRET" not in str(message)
    await node.close()


# =============================================================================
# Info and balances
# =============================================================================

@pytest.mark.asyncio
async def test_safe_info_reports_owners(session, window):
    await session.bridge.handle_incoming_message(incoming(window, "getSafeInfo"))

    data = window.posted[0][0]["data"]
    assert data["safeAddress"] == WALLET
    assert data["chainId"] == 1
    assert data["owners"] == [OWNER_A, OWNER_B]
    assert data["threshold"] == 2
    assert data["ethBalance"] == str(10**18)


@pytest.mark.asyncio
async def test_environment_info_and_legacy_alias(session, window):
    await session.bridge.handle_incoming_message(incoming(window, "getEnvironmentInfo", msg_id=1))
    await session.bridge.handle_incoming_message(incoming(window, "getEnvInfo", msg_id=2))

    assert [m["data"] for m, _ in window.posted] == [
        {"origin": session.bridge.host_origin},
        {"origin": session.bridge.host_origin},
    ]


@pytest.mark.asyncio
async def test_balances_skip_failed_tokens(session, window):
    await session.bridge.handle_incoming_message(incoming(window, "getSafeBalances"))

    [group] = window.posted[0][0]["data"]
    assert [item["tokenInfo"]["type"] for item in group["items"]] == ["NATIVE_TOKEN"]
    assert group["items"][0]["balance"] == str(10**18)


# =============================================================================
# Signature requests
# =============================================================================

@pytest.mark.asyncio
async def test_sign_message_is_answered_later(session, window):
    await session.bridge.handle_incoming_message(
        incoming(window, "signMessage", {"message": "hello"}, msg_id="sig-1")
    )

    assert window.posted == []
    assert session.pending_signatures["sig-1"].payload == "hello"

    session.respond_to_signature("sig-1", "0xsigned")

    message, _ = window.posted[0]
    assert message == {"id": "sig-1", "success": True, "version": "1.0.0", "data": {"signature": "0xsigned"}}
    assert "sig-1" not in session.pending_signatures


@pytest.mark.asyncio
async def test_typed_signature_can_be_rejected(session, window):
    await session.bridge.handle_incoming_message(
        incoming(window, "signTypedMessage", {"typedData": {"domain": {}}}, msg_id=5)
    )

    session.reject_signature(5)

    message, _ = window.posted[0]
    assert message["success"] is False
    assert message["error"] == "User rejected signature request"

    with pytest.raises(KeyError):
        session.reject_signature(5)
