"""
HTTP tests for the transaction, wallet and health routes.
"""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock

from impersonator.config import settings
from impersonator.core.errors import DispatchFailure
from impersonator.core.execution.models import ExecutionMethod, ExecutionResult
from impersonator.core.lifecycle.engine import TransactionLifecycleEngine
from impersonator.main import create_app
from impersonator.providers.base import FeeData
from impersonator.providers.rpc import RpcError
from impersonator.providers.wallets import StaticWalletAuthorization


WALLET = "0x9999999999999999999999999999999999999999"
RECIPIENT = "0x2222222222222222222222222222222222222222"
OWNER_A = "0x1000000000000000000000000000000000000001"
OWNER_B = "0x1000000000000000000000000000000000000002"
OUTSIDER = "0x1000000000000000000000000000000000000009"


@pytest.fixture
def dispatcher() -> MagicMock:
    mock = MagicMock()
    mock.dispatch = AsyncMock(
        return_value=ExecutionResult(method=ExecutionMethod.SIMULATION, success=True, hash="0xfeed")
    )
    mock.estimate_gas = AsyncMock(return_value=50_000)
    mock.provider = MagicMock()
    mock.provider.get_fee_data = AsyncMock(return_value=FeeData(gas_price=10, max_fee_per_gas=20))
    mock.gas_estimation_timeout_s = 1.0
    return mock


@pytest.fixture
def client(dispatcher) -> TestClient:
    engine = TransactionLifecycleEngine(
        authorization=StaticWalletAuthorization(),
        dispatcher=dispatcher,
        approval_lock_grace_ms=0,
    )
    return TestClient(create_app(engine=engine))


def register_wallet(client, owners=(OWNER_A, OWNER_B), threshold=2):
    response = client.put(f"/wallets/{WALLET}/owners", json={"owners": list(owners), "threshold": threshold})
    assert response.status_code == 200
    return response.json()


def create_tx(client, **overrides):
    body = {"from": WALLET, "to": RECIPIENT, "value": "1000"}
    body.update(overrides)
    return client.post("/transactions", json=body)


# =============================================================================
# Wallet owners
# =============================================================================

def test_wallet_owners_round_trip(client):
    register_wallet(client)

    response = client.get(f"/wallets/{WALLET}/owners")

    assert response.json() == {"success": True, "owners": [OWNER_A, OWNER_B], "threshold": 2}


def test_wallet_owners_validation(client):
    response = client.put(f"/wallets/{WALLET}/owners", json={"owners": [OWNER_A], "threshold": 2})
    assert response.status_code == 400

    response = client.get(f"/wallets/{RECIPIENT}/owners")
    assert response.status_code == 404


# =============================================================================
# Lifecycle over HTTP
# =============================================================================

def test_create_approve_execute(client, dispatcher):
    register_wallet(client)

    created = create_tx(client)
    assert created.status_code == 200
    tx = created.json()["transaction"]
    assert tx["status"] == "PENDING"
    assert tx["method"] == "SIMULATION"

    first = client.post(f"/transactions/{tx['id']}/approve", json={"approver": OWNER_A})
    assert first.json()["transaction"]["status"] == "PENDING"

    pending = client.get("/transactions/pending").json()["pending"]
    assert pending[0]["approvalCount"] == 1
    assert pending[0]["requiredApprovals"] == 2
    assert pending[0]["canExecute"] is False

    second = client.post(f"/transactions/{tx['id']}/approve", json={"approver": OWNER_B})
    body = second.json()["transaction"]
    assert body["status"] == "APPROVED"
    assert [a["approver"] for a in body["approvals"]] == [OWNER_A, OWNER_B]

    executed = client.post(f"/transactions/{tx['id']}/execute")
    assert executed.status_code == 200
    assert executed.json()["transaction"]["status"] == "SUCCESS"
    assert executed.json()["transaction"]["hash"] == "0xfeed"
    dispatcher.dispatch.assert_awaited_once()


def test_invalid_request_lists_errors(client):
    response = create_tx(client, to="0x123", value="-5")

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["category"] == "validation"
    assert len(detail["errors"]) == 2


def test_duplicate_request_conflicts(client):
    register_wallet(client)
    assert create_tx(client).status_code == 200

    response = create_tx(client)

    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "Duplicate transaction detected"


def test_non_owner_forbidden(client):
    register_wallet(client)
    tx_id = create_tx(client).json()["transaction"]["id"]

    response = client.post(f"/transactions/{tx_id}/approve", json={"approver": OUTSIDER})

    assert response.status_code == 403


def test_malformed_approver_is_bad_request(client):
    register_wallet(client)
    tx_id = create_tx(client).json()["transaction"]["id"]

    response = client.post(f"/transactions/{tx_id}/approve", json={"approver": "nope"})

    assert response.status_code == 400


def test_unknown_transaction_not_found(client):
    assert client.get("/transactions/tx_missing").status_code == 404
    assert client.post("/transactions/tx_missing/execute").status_code == 404
    assert client.post("/transactions/tx_missing/approve", json={"approver": OWNER_A}).status_code == 404


def test_execute_before_threshold_conflicts(client):
    register_wallet(client)
    tx_id = create_tx(client).json()["transaction"]["id"]

    response = client.post(f"/transactions/{tx_id}/execute")

    assert response.status_code == 409
    assert client.get(f"/transactions/{tx_id}").json()["transaction"]["status"] == "PENDING"


def test_reject_is_terminal(client):
    register_wallet(client)
    tx_id = create_tx(client).json()["transaction"]["id"]

    rejected = client.post(f"/transactions/{tx_id}/reject", json={"approver": OWNER_B})
    assert rejected.json()["transaction"]["status"] == "REJECTED"

    response = client.post(f"/transactions/{tx_id}/approve", json={"approver": OWNER_A})
    assert response.status_code == 409


def test_dispatch_failure_reports_failed_transaction(client, dispatcher):
    register_wallet(client, owners=(OWNER_A,), threshold=1)
    dispatcher.dispatch.side_effect = DispatchFailure("Relayer request timeout")
    tx_id = create_tx(client).json()["transaction"]["id"]

    response = client.post(f"/transactions/{tx_id}/execute")

    assert response.status_code == 502
    detail = response.json()["detail"]
    assert detail["error"] == "Relayer request timeout"
    assert detail["transaction"]["status"] == "FAILED"
    assert detail["transaction"]["error"] == "Relayer request timeout"


def test_estimate_gas(client, dispatcher):
    response = client.post("/transactions/estimate-gas", json={"from": WALLET, "to": RECIPIENT})

    assert response.status_code == 200
    assert response.json()["estimate"] == {
        "gasLimit": "50000",
        "gasPrice": "10",
        "maxFeePerGas": "20",
        "maxPriorityFeePerGas": None,
        "estimatedCost": "1000000",
    }


def test_list_transactions(client):
    register_wallet(client)
    create_tx(client)
    create_tx(client, value="2000")

    transactions = client.get("/transactions").json()["transactions"]

    assert [tx["value"] for tx in transactions] == ["1000", "2000"]


# =============================================================================
# Health and request logging
# =============================================================================

def test_request_id_echoed(client):
    response = client.get("/healthz", headers={"x-request-id": "abc123"})

    assert response.headers["x-request-id"] == "abc123"
    assert client.get("/").headers["x-request-id"]


def test_health_without_provider(client):
    body = client.get("/healthz").json()

    assert body["status"] == "healthy"
    assert body["engine"]["status"] == "ready"
    assert body["provider"] == {"status": "unavailable"}


def test_health_with_provider():
    provider = MagicMock()
    provider.get_chain_id = AsyncMock(return_value=1)
    engine = TransactionLifecycleEngine(authorization=StaticWalletAuthorization())
    client = TestClient(create_app(engine=engine, provider=provider))

    body = client.get("/healthz").json()

    assert body["provider"] == {"status": "healthy", "chainId": 1}


# =============================================================================
# Wiring from settings
# =============================================================================

@pytest.fixture
def node() -> MagicMock:
    provider = MagicMock()
    provider.get_chain_id = AsyncMock(return_value=1)
    provider.get_transaction_count = AsyncMock(return_value=3)
    provider.send = AsyncMock(return_value="0xabc")
    return provider


def test_direct_execution_through_impersonated_account(node):
    client = TestClient(create_app(provider=node, impersonated_address=WALLET))
    register_wallet(client, owners=(OWNER_A,), threshold=1)

    created = create_tx(client, method="DIRECT_ONCHAIN")
    assert created.status_code == 200
    tx_id = created.json()["transaction"]["id"]

    approved = client.post(f"/transactions/{tx_id}/approve", json={"approver": OWNER_A})
    assert approved.json()["transaction"]["status"] == "APPROVED"

    executed = client.post(f"/transactions/{tx_id}/execute")

    assert executed.status_code == 200
    assert executed.json()["transaction"]["status"] == "SUCCESS"
    assert executed.json()["transaction"]["hash"] == "0xabc"
    method, [sent] = node.send.await_args.args
    assert method == "eth_sendTransaction"
    assert sent["from"] == WALLET
    assert sent["to"] == RECIPIENT
    assert sent["nonce"] == "0x3"


def test_direct_execution_without_impersonated_account_fails(node, monkeypatch):
    monkeypatch.setattr(settings, "impersonated_address", "")
    client = TestClient(create_app(provider=node))
    register_wallet(client, owners=(OWNER_A,), threshold=1)
    tx_id = create_tx(client, method="DIRECT_ONCHAIN").json()["transaction"]["id"]
    client.post(f"/transactions/{tx_id}/approve", json={"approver": OWNER_A})

    response = client.post(f"/transactions/{tx_id}/execute")

    assert response.status_code == 502
    assert response.json()["detail"]["transaction"]["status"] == "FAILED"
    node.send.assert_not_awaited()


def test_pending_survives_unregistered_wallet(client):
    register_wallet(client, owners=(OWNER_A,), threshold=1)
    create_tx(client)
    client.app.state.authorization.remove_wallet(WALLET)

    response = client.get("/transactions/pending")

    assert response.status_code == 200
    [entry] = response.json()["pending"]
    assert entry["requiredApprovals"] is None
    assert entry["canExecute"] is False


def test_wallet_registration_refused_on_unsupported_chain(node):
    node.get_chain_id.return_value = 999
    client = TestClient(create_app(provider=node))

    response = client.put(f"/wallets/{WALLET}/owners", json={"owners": [OWNER_A], "threshold": 1})

    assert response.status_code == 400
    assert "999" in response.json()["detail"]
    assert client.get(f"/wallets/{WALLET}/owners").status_code == 404


def test_wallet_registration_with_unreachable_node(node):
    node.get_chain_id.side_effect = RpcError("eth_chainId", "HTTP 502")
    client = TestClient(create_app(provider=node))

    response = client.put(f"/wallets/{WALLET}/owners", json={"owners": [OWNER_A], "threshold": 1})

    assert response.status_code == 503
