"""Wires settings, database, collaborators and services together."""
from __future__ import annotations

import logging
from typing import Optional

from .clients.bridge import BridgeClient, CircleCCTPBridgeClient, SimulatedBridgeClient
from .clients.chains import ChainClientRegistry, EvmChainClient, SolanaChainClient
from .clients.signer import SignerPort, SimulatedSigner
from .config import SettlementSettings, load_settings
from .database import Database
from .exceptions import ConfigurationError
from .models import Chain, ChainFamily
from .runner import SettlementRunner
from .services import BridgeOrchestrator, MerchantService, PaymentService, PayoutService
from .store import SettlementStore

logger = logging.getLogger(__name__)

EVM_CHAINS = [c for c in Chain if c.family is ChainFamily.EVM]


class SettlementContainer:
    """
    Dependency container for the settlement services.

    Collaborators can be injected (tests pass fakes); anything not injected
    is built from settings according to ``chain_mode``.
    """

    _instance: Optional["SettlementContainer"] = None

    def __init__(
        self,
        settings: Optional[SettlementSettings] = None,
        *,
        database: Optional[Database] = None,
        bridge: Optional[BridgeClient] = None,
        chain_clients: Optional[ChainClientRegistry] = None,
        signer: Optional[SignerPort] = None,
    ):
        self.settings = settings or load_settings()
        simulated = self.settings.chain_mode == "simulated"
        custodial = {chain: self.settings.custodial_address(chain) for chain in Chain}

        if signer is None:
            if not simulated:
                raise ConfigurationError("chain_mode 'live' requires a SignerPort implementation")
            signer = SimulatedSigner({c: a for c, a in custodial.items() if a})
        if simulated and isinstance(signer, SimulatedSigner):
            # Unconfigured chains fall back to the simulated signer's wallets
            custodial = {c: a or signer.address_for(c) for c, a in custodial.items()}
        self.signer = signer

        self.database = database or Database(self.settings.database_url, echo=self.settings.sql_echo)
        self.store = SettlementStore(self.database)

        self._evm_client: Optional[EvmChainClient] = None
        self._standalone_sender: Optional[EvmChainClient] = None
        if chain_clients is None:
            self._evm_client = EvmChainClient(
                {c: self.settings.rpc_url(c) for c in EVM_CHAINS},
                {c: self.settings.usdc_address(c) for c in EVM_CHAINS},
                signer,
                simulated=simulated,
            )
            chain_clients = ChainClientRegistry([
                self._evm_client,
                SolanaChainClient(
                    self.settings.rpc_url(Chain.SOLANA),
                    self.settings.usdc_address(Chain.SOLANA),
                    signer,
                    simulated=simulated,
                ),
            ])
        self.chain_clients = chain_clients

        if bridge is None:
            if simulated:
                bridge = SimulatedBridgeClient(not_ready_polls=self.settings.simulated_attestation_polls)
            else:
                if self._evm_client is None:
                    self._standalone_sender = EvmChainClient(
                        {c: self.settings.rpc_url(c) for c in EVM_CHAINS},
                        {c: self.settings.usdc_address(c) for c in EVM_CHAINS},
                        signer,
                    )
                sender = self._evm_client or self._standalone_sender
                bridge = CircleCCTPBridgeClient(
                    sender,
                    attestation_url=self.settings.attestation_url,
                    mint_recipients=custodial,
                    usdc_addresses={c: self.settings.usdc_address(c) for c in EVM_CHAINS},
                    timeout=self.settings.circle_api_timeout_seconds,
                )
        self.bridge = bridge

        self.merchant_service = MerchantService(self.store)
        self.payout_service = PayoutService(self.store, self.chain_clients)
        self.payment_service = PaymentService(self.store, self.payout_service)
        self.orchestrator = BridgeOrchestrator(
            self.store,
            self.bridge,
            custodial,
            payout_service=self.payout_service,
            mint_retry_after_seconds=self.settings.mint_retry_after_seconds,
        )
        self.runner = SettlementRunner(
            self.store,
            self.orchestrator,
            batch_size=self.settings.runner_batch_size,
            stalled_after_seconds=self.settings.stalled_attestation_seconds,
        )
        logger.info(
            "Settlement container ready (env=%s, chain_mode=%s, db=%s)",
            self.settings.environment, self.settings.chain_mode, self.database.backend,
        )

    @classmethod
    def get_instance(cls) -> "SettlementContainer":
        """Get or create the process-wide container."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Forget the process-wide container (tests)."""
        cls._instance = None

    async def close(self) -> None:
        await self.bridge.close()
        await self.chain_clients.close()
        if self._standalone_sender is not None:
            await self._standalone_sender.close()
        await self.database.dispose()


__all__ = ["SettlementContainer"]
