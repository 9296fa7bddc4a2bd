"""Shared fixtures: a file-backed SQLite store, recording chain clients and a scriptable bridge."""
from __future__ import annotations

import logging

import pytest

from tap_settlement.clients.chains import ChainClientRegistry
from tap_settlement.database import Database
from tap_settlement.models import ChainFamily
from tap_settlement.services import BridgeOrchestrator, MerchantService, PaymentService, PayoutService
from tap_settlement.store import SettlementStore

from .fakes import (
    BASE_PAYOUT_ADDRESS,
    CUSTODIAL_ADDRESSES,
    SOLANA_PAYOUT_ADDRESS,
    RecordingChainClient,
    ScriptedBridge,
)


@pytest.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'settlement.db'}")
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def store(database):
    return SettlementStore(database)


@pytest.fixture
def evm_client():
    return RecordingChainClient(ChainFamily.EVM)


@pytest.fixture
def solana_client():
    return RecordingChainClient(ChainFamily.ACCOUNT)


@pytest.fixture
def chain_clients(evm_client, solana_client):
    return ChainClientRegistry([evm_client, solana_client])


@pytest.fixture
def bridge():
    return ScriptedBridge()


@pytest.fixture
def payout_service(store, chain_clients):
    return PayoutService(store, chain_clients)


@pytest.fixture
def payment_service(store, payout_service):
    return PaymentService(store, payout_service)


@pytest.fixture
def merchant_service(store):
    return MerchantService(store)


@pytest.fixture
def orchestrator(store, bridge, payout_service):
    return BridgeOrchestrator(store, bridge, CUSTODIAL_ADDRESSES, payout_service=payout_service)


@pytest.fixture
async def base_merchant(merchant_service):
    """Merchant paid out on Base."""
    return await merchant_service.create_merchant("Base Coffee", "BASE", BASE_PAYOUT_ADDRESS)


@pytest.fixture
async def solana_merchant(merchant_service):
    """Merchant paid out on Solana."""
    return await merchant_service.create_merchant("Sol Books", "solana", SOLANA_PAYOUT_ADDRESS)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
