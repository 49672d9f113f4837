import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock

from faucet.api.faucet import get_faucet
from faucet.core.errors import (
    CosmosBroadcastError,
    InvalidAddressError,
    RateLimitExceededError,
    RequestInProgressError,
)
from faucet.core.models import AddressType, TransferResult, TransferStatus
from faucet.execution.evm_multisend import ApprovalStatus
from faucet.main import create_app

RECIPIENT = "0x2222222222222222222222222222222222222222"


@pytest.fixture
def faucet(test_settings, signer):
    service = MagicMock()
    service.settings = test_settings
    service.signer = signer
    service.tokens = []
    service.sweeper = None
    service.dispense = AsyncMock(
        return_value=TransferResult(status=TransferStatus.CONFIRMED, network_type=AddressType.EVM, tx_hash="0xabc")
    )
    service.public_config.return_value = {"network": {"name": "test"}, "tokens": []}
    service.approval_status = AsyncMock(return_value=[])
    service.system_health = AsyncMock(
        return_value={"status": "healthy", "checks": {"evm_provider": True}, "score": "1/1", "providers": {}}
    )
    service.ledger_balances = AsyncMock(
        return_value={"type": "evm", "address": RECIPIENT, "is_faucet": False, "balances": []}
    )
    return service


@pytest.fixture
def client(faucet):
    app = create_app(use_lifespan=False)
    app.dependency_overrides[get_faucet] = lambda: faucet
    return TestClient(app)


def test_send_returns_result(client, faucet):
    resp = client.get(f"/send/{RECIPIENT}", headers={"cf-connecting-ip": "203.0.113.7"})

    assert resp.status_code == 200
    body = resp.json()["result"]
    assert body["status"] == "confirmed"
    assert body["transaction_hash"] == "0xabc"
    faucet.dispense.assert_awaited_once_with(RECIPIENT, "203.0.113.7")


def test_client_ip_uses_first_forwarded_hop(client, faucet):
    client.get(f"/send/{RECIPIENT}", headers={"x-forwarded-for": "198.51.100.4, 10.0.0.1"})

    faucet.dispense.assert_awaited_once_with(RECIPIENT, "198.51.100.4")


def test_client_ip_prefers_real_ip_over_forwarded(client, faucet):
    client.get(f"/send/{RECIPIENT}", headers={"x-real-ip": "198.51.100.5", "x-forwarded-for": "1.1.1.1"})

    faucet.dispense.assert_awaited_once_with(RECIPIENT, "198.51.100.5")


def test_invalid_address_is_400(client, faucet):
    faucet.dispense.side_effect = InvalidAddressError("Address [x] is not supported", {"address": "x"})

    resp = client.get("/send/x")

    assert resp.status_code == 400
    assert resp.json() == {
        "code": "invalid_address",
        "message": "Address [x] is not supported",
        "details": {"address": "x"},
    }


def test_rate_limit_is_429_with_retry_after(client, faucet):
    faucet.dispense.side_effect = RateLimitExceededError(
        "Rate limit exceeded (address)",
        retry_after=3600,
        details={"gates": {"address": {"limit": 1}}},
    )

    resp = client.get(f"/send/{RECIPIENT}")

    assert resp.status_code == 429
    assert resp.headers["Retry-After"] == "3600"
    assert resp.json()["code"] == "rate_limited"


def test_request_in_progress_is_409(client, faucet):
    faucet.dispense.side_effect = RequestInProgressError("busy")

    assert client.get(f"/send/{RECIPIENT}").status_code == 409


def test_chain_failure_is_502(client, faucet):
    faucet.dispense.side_effect = CosmosBroadcastError("rejected", tx_code=5, raw_log="insufficient funds")

    resp = client.get(f"/send/{RECIPIENT}")

    assert resp.status_code == 502
    assert resp.json()["details"]["raw_log"] == "insufficient funds"


def test_config_json(client):
    resp = client.get("/config.json")

    assert resp.status_code == 200
    assert resp.json()["network"]["name"] == "test"


def test_approvals_endpoint(client, faucet):
    faucet.approval_status.return_value = [
        ApprovalStatus(denom="wbtc", token="0xabc", allowance=5, required=10, approval_amount=100)
    ]

    resp = client.get("/api/approvals")

    body = resp.json()
    assert resp.status_code == 200
    assert body["all_sufficient"] is False
    assert body["approvals"][0]["allowance"] == "5"
    assert body["operator"] == faucet.signer.hex_address


def test_healthz_reports_signer(client, signer):
    resp = client.get("/healthz")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["score"] == "1/1"
    assert body["addresses"] == {"evm": signer.hex_address, "cosmos": signer.bech32_address}
    assert body["approval_sweep_running"] is False


def test_healthz_passes_through_degraded_checks(client, faucet):
    faucet.system_health.return_value = {
        "status": "degraded",
        "checks": {"evm_provider": True, "cosmos_client": False},
        "score": "1/2",
        "providers": {"cosmos": {"status": "error", "reason": "connect timeout"}},
    }

    body = client.get("/healthz").json()

    assert body["status"] == "degraded"
    assert body["checks"]["cosmos_client"] is False
    assert body["providers"]["cosmos"]["reason"] == "connect timeout"


def test_balance_for_queried_address(client, faucet):
    resp = client.get("/balance/evm", params={"address": RECIPIENT})

    assert resp.status_code == 200
    assert resp.json()["address"] == RECIPIENT
    faucet.ledger_balances.assert_awaited_once_with(AddressType.EVM, RECIPIENT)


def test_balance_defaults_to_faucet(client, faucet):
    client.get("/balance/cosmos")

    faucet.ledger_balances.assert_awaited_once_with(AddressType.COSMOS, None)


def test_balance_rejects_unknown_ledger(client, faucet):
    assert client.get("/balance/solana").status_code == 422
    faucet.ledger_balances.assert_not_awaited()


def test_balance_address_on_wrong_ledger_is_400(client, faucet):
    faucet.ledger_balances.side_effect = InvalidAddressError("Address [x] is not a cosmos address")

    assert client.get("/balance/cosmos", params={"address": RECIPIENT}).status_code == 400
