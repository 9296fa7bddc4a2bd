"""Payment registration: record a custodial deposit and decide whether to bridge."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from ..exceptions import NotFoundError, ValidationError
from ..logging_config import mask_address, settlement_context
from ..models import (
    Chain,
    MerchantRecord,
    PaymentRecord,
    PaymentStatus,
    PayoutRecord,
    TransferRecord,
    TransferStatus,
    to_usdc_amount,
)
from ..store import SettlementStore
from .payouts import PayoutService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistrationResult:
    payment: PaymentRecord
    transfer: Optional[TransferRecord]
    created: bool
    payout: Optional[PayoutRecord] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "payment": self.payment.to_dict(),
            "transfer": self.transfer.to_dict() if self.transfer else None,
            "created": self.created,
            "payout": self.payout.to_dict() if self.payout else None,
        }


@dataclass(frozen=True)
class PaymentDetails:
    payment: PaymentRecord
    merchant: MerchantRecord
    transfer: Optional[TransferRecord]

    def to_dict(self) -> dict[str, Any]:
        return {
            "payment": self.payment.to_dict(),
            "merchant": self.merchant.to_dict(),
            "transfer": self.transfer.to_dict() if self.transfer else None,
        }


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", field=field)
    return str(value).strip()


class PaymentService:
    """Registers incoming deposits. Safe under at-least-once delivery."""

    def __init__(self, store: SettlementStore, payout_service: Optional[PayoutService] = None):
        self._store = store
        self._payout_service = payout_service

    async def register_incoming_payment(
        self,
        merchant_id: str,
        source_chain: Chain | str,
        source_tx_hash: str,
        amount: Decimal | str,
        custodial_source_address: str,
    ) -> RegistrationResult:
        """
        Record a deposit and create its transfer.

        Same chain as the merchant's payout chain: payment SETTLED, transfer
        COMPLETED. Otherwise: payment RECEIVED, transfer PENDING_BURN. A
        repeated source_tx_hash returns the stored payment untouched.
        """
        chain = Chain.parse(source_chain)
        amount = to_usdc_amount(amount)
        source_tx_hash = _require_text(source_tx_hash, "source_tx_hash")
        custodial_source_address = _require_text(custodial_source_address, "custodial_source_address")

        merchant = await self._store.get_merchant(merchant_id)
        if merchant is None:
            raise NotFoundError("Merchant", merchant_id)

        same_chain = chain == merchant.payout_chain
        payment, transfer, created = await self._store.register_payment(
            merchant_id=merchant_id,
            source_chain=chain,
            source_tx_hash=source_tx_hash,
            amount=amount,
            custodial_source_address=custodial_source_address,
            payment_status=PaymentStatus.SETTLED if same_chain else PaymentStatus.RECEIVED,
            mint_chain=chain if same_chain else merchant.payout_chain,
            transfer_status=TransferStatus.COMPLETED if same_chain else TransferStatus.PENDING_BURN,
        )

        with settlement_context(payment_id=payment.payment_id, merchant_id=merchant_id):
            if not created:
                logger.info("Payment for tx %s already registered", source_tx_hash)
                return RegistrationResult(payment=payment, transfer=transfer, created=False)

            logger.info(
                "Registered %s USDC on %s from %s (%s)",
                amount, chain.value, mask_address(custodial_source_address),
                "settled on arrival" if same_chain else f"bridging to {merchant.payout_chain.value}",
            )

            payout = None
            if same_chain and self._payout_service is not None:
                payout = await self._payout_service.create_and_send_payout(merchant_id, chain, amount)
            return RegistrationResult(payment=payment, transfer=transfer, created=True, payout=payout)

    async def get_payment(self, payment_id: str) -> PaymentRecord:
        payment = await self._store.get_payment(payment_id)
        if payment is None:
            raise NotFoundError("Payment", payment_id)
        return payment

    async def get_payment_by_tx_hash(self, source_tx_hash: str) -> PaymentRecord:
        payment = await self._store.get_payment_by_tx_hash(source_tx_hash)
        if payment is None:
            raise NotFoundError("Payment", source_tx_hash)
        return payment

    async def get_payment_details(self, payment_id: str) -> PaymentDetails:
        payment = await self.get_payment(payment_id)
        merchant = await self._store.get_merchant(payment.merchant_id)
        if merchant is None:
            raise NotFoundError("Merchant", payment.merchant_id)
        transfer = await self._store.get_transfer_for_payment(payment_id)
        return PaymentDetails(payment=payment, merchant=merchant, transfer=transfer)


__all__ = ["PaymentDetails", "PaymentService", "RegistrationResult"]
