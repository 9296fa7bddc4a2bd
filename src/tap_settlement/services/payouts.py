"""Payout dispatcher: sends settled USDC to the merchant's payout address."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from ..clients.chains import ChainClientRegistry
from ..exceptions import ChainMismatchError, NotFoundError
from ..logging_config import mask_address, settlement_context
from ..models import Chain, PayoutRecord, to_usdc_amount
from ..store import SettlementStore

logger = logging.getLogger(__name__)


def error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class PayoutService:
    """Creates a Payout row, then sends through the chain family's client.

    A new Payout is created for every call; failed payouts are not retried.
    """

    def __init__(self, store: SettlementStore, chain_clients: ChainClientRegistry):
        self._store = store
        self._chain_clients = chain_clients

    async def create_and_send_payout(
        self,
        merchant_id: str,
        destination_chain: Chain | str,
        amount: Decimal | str,
        *,
        transfer_id: Optional[str] = None,
    ) -> PayoutRecord:
        chain = Chain.parse(destination_chain)
        amount = to_usdc_amount(amount)

        merchant = await self._store.get_merchant(merchant_id)
        if merchant is None:
            raise NotFoundError("Merchant", merchant_id)
        if chain != merchant.payout_chain:
            raise ChainMismatchError(merchant_id, merchant.payout_chain.value, chain.value)

        client = self._chain_clients.for_chain(chain)

        with settlement_context(merchant_id=merchant_id, transfer_id=transfer_id):
            # Committed before any send so a crash mid-send leaves a PENDING trace
            payout = await self._store.create_payout(
                merchant_id=merchant_id,
                destination_chain=chain,
                destination_address=merchant.payout_address,
                amount=amount,
                transfer_id=transfer_id,
            )
            logger.info(
                "Payout %s: sending %s USDC on %s to %s",
                payout.payout_id, amount, chain.value, mask_address(payout.destination_address),
            )
            try:
                tx_hash = await client.send_usdc(chain, payout.destination_address, amount)
            except Exception as e:
                logger.error("Payout %s failed: %s", payout.payout_id, e, exc_info=True)
                await self._store.mark_payout_failed(payout.payout_id, error_message(e))
                raise

            payout = await self._store.mark_payout_sent(payout.payout_id, tx_hash)
            logger.info("Payout %s sent: %s", payout.payout_id, tx_hash)
            return payout

    async def get_payout(self, payout_id: str) -> PayoutRecord:
        payout = await self._store.get_payout(payout_id)
        if payout is None:
            raise NotFoundError("Payout", payout_id)
        return payout

    async def list_merchant_payouts(self, merchant_id: str, limit: int = 100) -> list[PayoutRecord]:
        """Payouts for a merchant, newest first."""
        if await self._store.get_merchant(merchant_id) is None:
            raise NotFoundError("Merchant", merchant_id)
        return await self._store.list_payouts(merchant_id, limit=limit)


__all__ = ["PayoutService", "error_message"]
