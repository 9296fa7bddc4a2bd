"""Tests for the HTTP API."""
from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from tap_settlement.api import create_app
from tap_settlement.config import SettlementSettings
from tap_settlement.container import SettlementContainer
from tap_settlement.models import Chain

from .fakes import BASE_PAYOUT_ADDRESS, CUSTODIAL_ADDRESSES, ScriptedBridge

API = "/api/v1"


@pytest.fixture
def api_bridge():
    return ScriptedBridge(not_ready_polls=1)


@pytest.fixture
async def client(tmp_path, database, chain_clients, api_bridge):
    settings = SettlementSettings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'settlement.db'}",
        ethereum_custodial_address=CUSTODIAL_ADDRESSES[Chain.ETHEREUM],
        base_custodial_address=CUSTODIAL_ADDRESSES[Chain.BASE],
        solana_custodial_address=CUSTODIAL_ADDRESSES[Chain.SOLANA],
    )
    container = SettlementContainer(
        settings, database=database, bridge=api_bridge, chain_clients=chain_clients,
    )
    app = create_app(container)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def create_merchant(client, chain="BASE", address=BASE_PAYOUT_ADDRESS):
    resp = await client.post(f"{API}/merchants", json={
        "name": "Coffee Co", "payout_chain": chain, "payout_address": address,
    })
    assert resp.status_code == 201
    return resp.json()["merchant_id"]


async def register(client, merchant_id, tx_hash="sol_tx", chain="SOLANA", amount="20.5"):
    return await client.post(f"{API}/payments/incoming", json={
        "merchant_id": merchant_id,
        "source_chain": chain,
        "source_tx_hash": tx_hash,
        "amount": amount,
        "custodial_source_address": CUSTODIAL_ADDRESSES[Chain(chain)],
    })


class TestHealth:
    async def test_health(self, client):
        resp = await client.get("/health")

        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"
        assert resp.json()["chain_mode"] == "simulated"

    async def test_request_id_is_echoed(self, client):
        """Test the caller's request id is returned on the response."""
        resp = await client.get("/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"


class TestMerchantRoutes:
    async def test_create_and_get(self, client):
        merchant_id = await create_merchant(client)

        resp = await client.get(f"{API}/merchants/{merchant_id}")

        assert resp.status_code == 200
        assert resp.json()["payout_chain"] == "BASE"
        assert resp.json()["payout_address"] == BASE_PAYOUT_ADDRESS

    async def test_invalid_chain(self, client):
        """Test an unsupported chain maps to 400 VALIDATION_ERROR."""
        resp = await client.post(f"{API}/merchants", json={
            "name": "Coffee Co", "payout_chain": "DOGE", "payout_address": BASE_PAYOUT_ADDRESS,
        })

        assert resp.status_code == 400
        assert resp.json()["error"] == "VALIDATION_ERROR"
        assert "request_id" in resp.json()

    async def test_missing_merchant(self, client):
        resp = await client.get(f"{API}/merchants/mer_missing")

        assert resp.status_code == 404
        assert resp.json()["error"] == "NOT_FOUND"

    async def test_manual_payout_chain_mismatch(self, client):
        """Test a payout on the wrong chain maps to 400 CHAIN_MISMATCH."""
        merchant_id = await create_merchant(client)

        resp = await client.post(f"{API}/merchants/{merchant_id}/payout", json={
            "destination_chain": "ETHEREUM", "amount": "1",
        })

        assert resp.status_code == 400
        assert resp.json()["error"] == "CHAIN_MISMATCH"

    async def test_manual_payout_and_listing(self, client):
        merchant_id = await create_merchant(client)

        resp = await client.post(f"{API}/merchants/{merchant_id}/payout", json={
            "destination_chain": "BASE", "amount": "4.25",
        })
        listed = await client.get(f"{API}/merchants/{merchant_id}/payouts")

        assert resp.status_code == 201
        assert resp.json()["status"] == "SENT"
        assert resp.json()["amount"] == "4.250000"
        assert [p["payout_id"] for p in listed.json()] == [resp.json()["payout_id"]]


class TestPaymentFlow:
    async def test_register_bridge_and_mint(self, client):
        """Test a cross-chain payment end to end over HTTP."""
        merchant_id = await create_merchant(client)

        registered = await register(client, merchant_id)
        assert registered.status_code == 200
        body = registered.json()
        assert body["created"] is True
        assert body["payment"]["status"] == "RECEIVED"
        assert body["transfer"]["status"] == "PENDING_BURN"
        payment_id = body["payment"]["payment_id"]
        transfer_id = body["transfer"]["transfer_id"]

        bridged = await client.post(f"{API}/payments/{payment_id}/bridge")
        assert bridged.status_code == 200
        assert bridged.json()["transfer"]["status"] == "PENDING_ATTESTATION"
        assert bridged.json()["payment"]["status"] == "BRIDGE_IN_PROGRESS"

        pending = await client.post(f"{API}/transfers/{transfer_id}/mint")
        assert pending.status_code == 202
        assert pending.json()["error"] == "ATTESTATION_NOT_READY"
        assert pending.json()["retryable"] is True

        minted = await client.post(f"{API}/transfers/{transfer_id}/mint")
        assert minted.status_code == 200
        assert minted.json()["transfer"]["status"] == "COMPLETED"
        assert minted.json()["payment"]["status"] == "SETTLED"
        assert minted.json()["payout"]["status"] == "SENT"

        details = await client.get(f"{API}/payments/{payment_id}")
        assert details.json()["transfer"]["mint_tx_hash"] == minted.json()["transfer"]["mint_tx_hash"]
        transfer = await client.get(f"{API}/transfers/{transfer_id}")
        assert transfer.json()["status"] == "COMPLETED"

    async def test_duplicate_registration(self, client):
        merchant_id = await create_merchant(client)

        first = await register(client, merchant_id, tx_hash="dup")
        second = await register(client, merchant_id, tx_hash="dup")

        assert second.status_code == 200
        assert second.json()["created"] is False
        assert second.json()["payment"]["payment_id"] == first.json()["payment"]["payment_id"]

    @pytest.mark.parametrize("amount", ["-5", "0", "1.0000001"])
    async def test_invalid_amount(self, client, amount):
        merchant_id = await create_merchant(client)

        resp = await register(client, merchant_id, amount=amount)

        assert resp.status_code == 400
        assert resp.json()["details"]["field"] == "amount"

    async def test_unknown_payment(self, client):
        resp = await client.get(f"{API}/payments/pay_missing")
        assert resp.status_code == 404

    async def test_unknown_transfer(self, client):
        resp = await client.get(f"{API}/transfers/xfer_missing")
        assert resp.status_code == 404
        assert resp.json()["details"]["resource_type"] == "Transfer"
