"""Tests for container wiring and the operator CLI."""
from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from tap_settlement.cli import cli
from tap_settlement.clients.bridge import CircleCCTPBridgeClient, SimulatedBridgeClient
from tap_settlement.clients.signer import SimulatedSigner
from tap_settlement.config import SettlementSettings
from tap_settlement.container import SettlementContainer
from tap_settlement.exceptions import ConfigurationError
from tap_settlement.models import Chain, ChainFamily, TransferStatus

from .fakes import BASE_PAYOUT_ADDRESS, CUSTODIAL_ADDRESSES


def settings_for(tmp_path, **overrides):
    return SettlementSettings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'container.db'}",
        **overrides,
    )


class TestSettlementContainer:
    async def test_simulated_wiring(self, tmp_path):
        """Test simulated mode builds a simulated bridge and both chain families."""
        container = SettlementContainer(settings_for(tmp_path, simulated_attestation_polls=3))
        try:
            assert isinstance(container.bridge, SimulatedBridgeClient)
            assert container.bridge.not_ready_polls == 3
            assert isinstance(container.signer, SimulatedSigner)
            assert ChainFamily.EVM in container.chain_clients
            assert ChainFamily.ACCOUNT in container.chain_clients
            assert container.database.backend == "sqlite"
        finally:
            await container.close()

    async def test_live_requires_signer(self, tmp_path):
        """Test live mode refuses to start without a signing provider."""
        with pytest.raises(ConfigurationError):
            SettlementContainer(settings_for(tmp_path, chain_mode="live"))

    async def test_live_uses_circle_bridge(self, tmp_path):
        container = SettlementContainer(settings_for(tmp_path, chain_mode="live"), signer=SimulatedSigner())
        try:
            assert isinstance(container.bridge, CircleCCTPBridgeClient)
        finally:
            await container.close()

    async def test_simulated_mode_fills_custodial_addresses(self, tmp_path):
        """Test simulated mode bridges without configured custodial addresses."""
        container = SettlementContainer(settings_for(tmp_path))
        try:
            await container.database.create_all()
            merchant = await container.merchant_service.create_merchant("Shop", "BASE", BASE_PAYOUT_ADDRESS)
            registered = await container.payment_service.register_incoming_payment(
                merchant.merchant_id, "SOLANA", "sol_tx", "5", CUSTODIAL_ADDRESSES[Chain.SOLANA],
            )

            result = await container.orchestrator.start_bridge_for_payment(registered.payment.payment_id)

            assert result.transfer.status is TransferStatus.PENDING_ATTESTATION
        finally:
            await container.close()

    def test_process_wide_instance(self, monkeypatch, tmp_path):
        SettlementContainer.reset()
        monkeypatch.setattr("tap_settlement.container.load_settings", lambda: settings_for(tmp_path))
        try:
            assert SettlementContainer.get_instance() is SettlementContainer.get_instance()
        finally:
            SettlementContainer.reset()


@pytest.fixture
def cli_env(tmp_path, monkeypatch, restore_root_logger):
    monkeypatch.setenv("TAP_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("TAP_LOG_LEVEL", "WARNING")
    monkeypatch.setenv("TAP_CHAIN_MODE", "simulated")
    monkeypatch.setenv("TAP_BASE_CUSTODIAL_ADDRESS", CUSTODIAL_ADDRESSES[Chain.BASE])
    monkeypatch.setenv("TAP_SOLANA_CUSTODIAL_ADDRESS", CUSTODIAL_ADDRESSES[Chain.SOLANA])
    runner = CliRunner()
    result = runner.invoke(cli, ["init-db"])
    assert result.exit_code == 0, result.output
    return runner


class TestCli:
    def test_init_db(self, cli_env):
        result = cli_env.invoke(cli, ["init-db"])

        assert result.exit_code == 0
        assert "Database initialized" in result.output

    def test_merchant_create(self, cli_env):
        result = cli_env.invoke(cli, [
            "merchant", "create", "--name", "Coffee", "--chain", "BASE", "--address", BASE_PAYOUT_ADDRESS,
        ])

        assert result.exit_code == 0, result.output
        assert "Merchant created" in result.output

    def test_invalid_merchant_exits_nonzero(self, cli_env):
        """Test settlement errors are printed and exit with status 1."""
        result = cli_env.invoke(cli, [
            "merchant", "create", "--name", "Coffee", "--chain", "BASE", "--address", "not-an-address",
        ])

        assert result.exit_code == 1
        assert "VALIDATION_ERROR" in result.output

    def test_register_unknown_merchant(self, cli_env):
        result = cli_env.invoke(cli, [
            "register", "--merchant", "mer_missing", "--chain", "SOLANA", "--tx", "tx1",
            "--amount", "5", "--custodial-address", CUSTODIAL_ADDRESSES[Chain.SOLANA],
        ])

        assert result.exit_code == 1
        assert "NOT_FOUND" in result.output

    def test_run_pass_json(self, cli_env):
        """Test an empty pass reports zero counts as JSON."""
        result = cli_env.invoke(cli, ["run-pass", "--json"])

        assert result.exit_code == 0, result.output
        report = json.loads(result.output)
        assert report["started"] == 0
        assert report["errors"] == []
