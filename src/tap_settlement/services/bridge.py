"""Bridge orchestrator: drives a transfer through burn, attestation and mint.

Both operations are safe to re-invoke and to run concurrently. No database
transaction is open while a bridge call is in flight; every state change is a
compare-and-set in the store, and only the winner of a transition acts on it:

    PENDING_BURN --burn--> PENDING_ATTESTATION --attest--> PENDING_MINT --mint--> COMPLETED
          \\                                                    /
           `------------------------> FAILED <---------------'
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping, Optional

from ..clients.bridge import BridgeClient
from ..exceptions import (
    AttestationNotReadyError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from ..logging_config import mask_address, settlement_context
from ..models import (
    Chain,
    MerchantRecord,
    PaymentRecord,
    PayoutRecord,
    TransferRecord,
    TransferStatus,
    utcnow,
)
from ..store import SettlementStore, new_id
from .payouts import PayoutService, error_message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BridgeResult:
    payment: PaymentRecord
    transfer: Optional[TransferRecord]
    message: str
    payout: Optional[PayoutRecord] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "payment": self.payment.to_dict(),
            "transfer": self.transfer.to_dict() if self.transfer else None,
            "message": self.message,
            "payout": self.payout.to_dict() if self.payout else None,
        }


class BridgeOrchestrator:
    """Burns on the source chain, then attests and mints on the payout chain."""

    def __init__(
        self,
        store: SettlementStore,
        bridge: BridgeClient,
        custodial_addresses: Mapping[Chain, Optional[str]],
        payout_service: Optional[PayoutService] = None,
        mint_retry_after_seconds: int = 300,
    ):
        self._store = store
        self._bridge = bridge
        self._custodial_addresses = dict(custodial_addresses)
        self._payout_service = payout_service
        self._mint_retry_after = timedelta(seconds=mint_retry_after_seconds)

    def _custodial_destination(self, chain: Chain) -> str:
        address = self._custodial_addresses.get(chain)
        if not address:
            raise ConfigurationError(
                f"No custodial address configured for {chain.value}",
                details={"chain": chain.value},
            )
        return address

    async def _load_payment(self, payment_id: str) -> tuple[PaymentRecord, MerchantRecord]:
        payment = await self._store.get_payment(payment_id)
        if payment is None:
            raise NotFoundError("Payment", payment_id)
        merchant = await self._store.get_merchant(payment.merchant_id)
        if merchant is None:
            raise NotFoundError("Merchant", payment.merchant_id)
        return payment, merchant

    async def _current(self, transfer_id: str, message: str) -> BridgeResult:
        transfer = await self._store.get_transfer(transfer_id)
        if transfer is None:
            raise NotFoundError("Transfer", transfer_id)
        payment = await self._store.get_payment(transfer.payment_id)
        if payment is None:
            raise NotFoundError("Payment", transfer.payment_id)
        return BridgeResult(payment=payment, transfer=transfer, message=message)

    # ------------------------------------------------------------------
    # Stage 1: burn
    # ------------------------------------------------------------------

    async def start_bridge_for_payment(self, payment_id: str) -> BridgeResult:
        """Submit the burn for a payment's transfer, at most once."""
        payment, merchant = await self._load_payment(payment_id)

        with settlement_context(payment_id=payment_id, merchant_id=merchant.merchant_id):
            if payment.source_chain == merchant.payout_chain:
                settled = await self._store.mark_payment_settled(payment_id) or payment
                transfer = await self._store.get_transfer_for_payment(payment_id)
                return BridgeResult(
                    payment=settled, transfer=transfer, message="Same-chain payment; no bridge needed",
                )

            transfer = await self._store.get_active_transfer(payment_id)
            if transfer is None:
                raise NotFoundError("Active transfer for payment", payment_id)

            with settlement_context(transfer_id=transfer.transfer_id):
                if transfer.status is not TransferStatus.PENDING_BURN:
                    logger.info("Burn already submitted; transfer is %s", transfer.status.value)
                    return BridgeResult(
                        payment=payment,
                        transfer=transfer,
                        message=f"Burn already submitted; transfer is {transfer.status.value}",
                    )
                return await self._burn(payment, transfer)

    async def _burn(self, payment: PaymentRecord, transfer: TransferRecord) -> BridgeResult:
        mint_recipient = self._custodial_destination(transfer.mint_chain)

        claim_id = new_id("claim")
        if not await self._store.claim_burn(transfer.transfer_id, claim_id):
            logger.warning("Burn for transfer %s already claimed by another invocation", transfer.transfer_id)
            return await self._current(transfer.transfer_id, "Burn already claimed by another invocation")

        logger.info(
            "Burning %s USDC on %s from %s for mint on %s",
            payment.amount, transfer.burn_chain.value,
            mask_address(payment.custodial_source_address), transfer.mint_chain.value,
        )
        try:
            burn_tx_hash = await self._bridge.burn_usdc(
                transfer.burn_chain,
                payment.amount,
                payment.custodial_source_address,
                destination_chain=transfer.mint_chain,
                mint_recipient=mint_recipient,
            )
        except Exception as e:
            logger.error("Burn failed for transfer %s: %s", transfer.transfer_id, e, exc_info=True)
            await self._store.record_burn_failure(transfer.transfer_id, claim_id, error_message(e))
            raise

        if not await self._store.record_burn(transfer.transfer_id, claim_id, burn_tx_hash):
            logger.error(
                "Burn %s for transfer %s succeeded but could not be recorded; reconcile manually",
                burn_tx_hash, transfer.transfer_id,
            )
            raise ConflictError(
                f"Burn for transfer {transfer.transfer_id} was submitted but its claim was lost",
                details={"transfer_id": transfer.transfer_id, "burn_tx_hash": burn_tx_hash},
            )

        logger.info("Burn submitted: %s; awaiting attestation", burn_tx_hash)
        return await self._current(transfer.transfer_id, "Burn submitted; awaiting attestation")

    # ------------------------------------------------------------------
    # Stage 2: attest + mint
    # ------------------------------------------------------------------

    async def poll_attestation_and_mint(self, transfer_id: str) -> BridgeResult:
        """Fetch the attestation if needed, mint, then pay the merchant."""
        transfer = await self._store.get_transfer(transfer_id)
        if transfer is None:
            raise NotFoundError("Transfer", transfer_id)
        payment, merchant = await self._load_payment(transfer.payment_id)

        with settlement_context(
            payment_id=payment.payment_id, transfer_id=transfer_id, merchant_id=merchant.merchant_id,
        ):
            if transfer.status.is_terminal:
                return BridgeResult(
                    payment=payment, transfer=transfer, message=f"Transfer already {transfer.status.value}",
                )
            if not transfer.burn_tx_hash:
                raise ValidationError(
                    f"Transfer {transfer_id} has no burn transaction yet", field="burn_tx_hash",
                )

            recipient = self._custodial_destination(transfer.mint_chain)

            if transfer.status is TransferStatus.PENDING_ATTESTATION:
                try:
                    attestation_id = await self._bridge.get_attestation(
                        transfer.burn_tx_hash, source_chain=transfer.burn_chain,
                    )
                except AttestationNotReadyError:
                    logger.info("Attestation for burn %s not ready", transfer.burn_tx_hash)
                    raise

                if not await self._store.record_attestation(transfer_id, attestation_id):
                    logger.warning("Attestation for transfer %s recorded by another invocation", transfer_id)
                    return await self._current(transfer_id, "Attestation already recorded by another invocation")
                logger.info("Attestation recorded; minting on %s", transfer.mint_chain.value)
            else:
                stale_before = utcnow() - self._mint_retry_after
                if not await self._store.claim_mint_retry(transfer_id, stale_before):
                    return await self._current(transfer_id, "Mint in progress")
                attestation_id = transfer.attestation_id
                logger.warning("Re-driving mint for transfer %s left in PENDING_MINT", transfer_id)

            return await self._mint(payment, merchant, transfer, attestation_id, recipient)

    async def _mint(
        self,
        payment: PaymentRecord,
        merchant: MerchantRecord,
        transfer: TransferRecord,
        attestation_id: Optional[str],
        recipient: str,
    ) -> BridgeResult:
        transfer_id = transfer.transfer_id
        try:
            if not attestation_id:
                raise ValidationError("Transfer has no attestation to mint with", field="attestation_id")
            mint_tx_hash = await self._bridge.mint_usdc(transfer.mint_chain, attestation_id, recipient)
        except Exception as e:
            logger.error("Mint failed for transfer %s: %s", transfer_id, e, exc_info=True)
            await self._store.record_mint_failure(transfer_id, error_message(e))
            raise

        if not await self._store.record_mint(transfer_id, mint_tx_hash):
            logger.error(
                "Mint %s for transfer %s succeeded but could not be recorded; reconcile manually",
                mint_tx_hash, transfer_id,
            )
            await self._store.record_orphaned_mint(
                transfer_id, mint_tx_hash, f"Mint {mint_tx_hash} confirmed after transfer left PENDING_MINT",
            )
            raise ConflictError(
                f"Mint for transfer {transfer_id} was submitted but its transition was lost",
                details={"transfer_id": transfer_id, "mint_tx_hash": mint_tx_hash},
            )
        logger.info("Mint confirmed: %s", mint_tx_hash)

        payout = None
        if self._payout_service is not None:
            try:
                payout = await self._payout_service.create_and_send_payout(
                    merchant.merchant_id, transfer.mint_chain, payment.amount, transfer_id=transfer_id,
                )
            except Exception:
                logger.error("Payout failed after mint; transfer %s stays COMPLETED", transfer_id, exc_info=True)
                raise

        result = await self._current(transfer_id, "Bridge completed")
        return BridgeResult(payment=result.payment, transfer=result.transfer, message=result.message, payout=payout)


__all__ = ["BridgeOrchestrator", "BridgeResult"]
