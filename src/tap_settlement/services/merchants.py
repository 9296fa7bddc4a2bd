"""Merchant onboarding for operators."""
from __future__ import annotations

import logging
from typing import Optional

from ..clients.chains.evm import is_evm_address
from ..clients.chains.solana import is_solana_address
from ..exceptions import NotFoundError, ValidationError
from ..logging_config import mask_address
from ..models import Chain, ChainFamily, MerchantRecord
from ..store import SettlementStore

logger = logging.getLogger(__name__)

_ADDRESS_CHECKS = {
    ChainFamily.EVM: is_evm_address,
    ChainFamily.ACCOUNT: is_solana_address,
}


class MerchantService:
    def __init__(self, store: SettlementStore):
        self._store = store

    async def create_merchant(
        self,
        name: str,
        payout_chain: Chain | str,
        payout_address: str,
        email: Optional[str] = None,
    ) -> MerchantRecord:
        chain = Chain.parse(payout_chain)
        if not name or not name.strip():
            raise ValidationError("name is required", field="name")
        payout_address = (payout_address or "").strip()
        if not _ADDRESS_CHECKS[chain.family](payout_address):
            raise ValidationError(
                f"'{payout_address}' is not a valid {chain.value} address", field="payout_address",
            )
        merchant = await self._store.create_merchant(
            name=name.strip(),
            payout_chain=chain,
            payout_address=payout_address,
            email=email,
        )
        logger.info("Created merchant %s paid out on %s to %s",
                    merchant.merchant_id, chain.value, mask_address(payout_address))
        return merchant

    async def get_merchant(self, merchant_id: str) -> MerchantRecord:
        merchant = await self._store.get_merchant(merchant_id)
        if merchant is None:
            raise NotFoundError("Merchant", merchant_id)
        return merchant

    async def list_merchants(self, limit: int = 100) -> list[MerchantRecord]:
        return await self._store.list_merchants(limit=limit)


__all__ = ["MerchantService"]
