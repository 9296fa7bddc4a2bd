"""Transactional store for merchants, payments, transfers and payouts.

All status changes on transfers are compare-and-set: the UPDATE names the
status (and claim) it expects, and the caller learns from the returned bool
whether it won. Methods return immutable records, never ORM rows.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from sqlalchemy import and_, exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .database import Database, MerchantDB, PaymentDB, PayoutDB, TransferDB
from .exceptions import NotFoundError
from .models import (
    ACTIVE_TRANSFER_STATUSES,
    Chain,
    MerchantRecord,
    PaymentRecord,
    PaymentStatus,
    PayoutRecord,
    PayoutStatus,
    TransferRecord,
    TransferStatus,
    utcnow,
)

logger = logging.getLogger(__name__)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


class SettlementStore:
    """Persistence for the settlement state machine."""

    def __init__(self, db: Database):
        self._db = db

    @property
    def database(self) -> Database:
        return self._db

    # ------------------------------------------------------------------
    # Merchants
    # ------------------------------------------------------------------

    async def create_merchant(
        self,
        name: str,
        payout_chain: Chain,
        payout_address: str,
        email: Optional[str] = None,
        merchant_id: Optional[str] = None,
    ) -> MerchantRecord:
        row = MerchantDB(
            merchant_id=merchant_id or new_id("mer"),
            name=name,
            email=email,
            payout_chain=payout_chain,
            payout_address=payout_address,
        )
        async with self._db.transaction() as session:
            session.add(row)
        return MerchantRecord.from_row(row)

    async def get_merchant(self, merchant_id: str) -> Optional[MerchantRecord]:
        async with self._db.session() as session:
            row = await session.get(MerchantDB, merchant_id)
            return MerchantRecord.from_row(row) if row else None

    async def list_merchants(self, limit: int = 100) -> list[MerchantRecord]:
        async with self._db.session() as session:
            result = await session.execute(
                select(MerchantDB).order_by(MerchantDB.created_at.desc()).limit(limit)
            )
            return [MerchantRecord.from_row(r) for r in result.scalars()]

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    async def get_payment(self, payment_id: str) -> Optional[PaymentRecord]:
        async with self._db.session() as session:
            row = await session.get(PaymentDB, payment_id)
            return PaymentRecord.from_row(row) if row else None

    async def get_payment_by_tx_hash(self, source_tx_hash: str) -> Optional[PaymentRecord]:
        async with self._db.session() as session:
            row = await self._payment_by_tx_hash(session, source_tx_hash)
            return PaymentRecord.from_row(row) if row else None

    async def _payment_by_tx_hash(self, session: AsyncSession, source_tx_hash: str) -> Optional[PaymentDB]:
        result = await session.execute(
            select(PaymentDB).where(PaymentDB.source_tx_hash == source_tx_hash)
        )
        return result.scalar_one_or_none()

    async def _registered(self, source_tx_hash: str) -> Optional[tuple[PaymentRecord, Optional[TransferRecord]]]:
        async with self._db.session() as session:
            payment = await self._payment_by_tx_hash(session, source_tx_hash)
            if payment is None:
                return None
            transfer = await self._transfer_for_payment(session, payment.payment_id)
            return (
                PaymentRecord.from_row(payment),
                TransferRecord.from_row(transfer) if transfer else None,
            )

    async def register_payment(
        self,
        *,
        merchant_id: str,
        source_chain: Chain,
        source_tx_hash: str,
        amount: Decimal,
        custodial_source_address: str,
        payment_status: PaymentStatus,
        mint_chain: Chain,
        transfer_status: TransferStatus,
    ) -> tuple[PaymentRecord, Optional[TransferRecord], bool]:
        """
        Insert a payment and its transfer in one transaction.

        Returns (payment, transfer, created). When a payment with the same
        source_tx_hash exists, including one inserted concurrently, it is
        returned unchanged with created=False.
        """
        existing = await self._registered(source_tx_hash)
        if existing is not None:
            return existing[0], existing[1], False

        now = utcnow()
        payment = PaymentDB(
            payment_id=new_id("pay"),
            merchant_id=merchant_id,
            source_chain=source_chain,
            source_tx_hash=source_tx_hash,
            amount=amount,
            status=payment_status,
            custodial_source_address=custodial_source_address,
            created_at=now,
            updated_at=now,
        )
        transfer = TransferDB(
            transfer_id=new_id("xfer"),
            payment_id=payment.payment_id,
            burn_chain=source_chain,
            mint_chain=mint_chain,
            status=transfer_status,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._db.transaction() as session:
                session.add(payment)
                await session.flush()
                session.add(transfer)
        except IntegrityError:
            existing = await self._registered(source_tx_hash)
            if existing is None:
                raise
            logger.info("Lost registration race for tx %s; returning existing payment", source_tx_hash)
            return existing[0], existing[1], False

        return PaymentRecord.from_row(payment), TransferRecord.from_row(transfer), True

    async def mark_payment_settled(self, payment_id: str) -> Optional[PaymentRecord]:
        """Idempotently move a payment that is not failed to SETTLED."""
        async with self._db.transaction() as session:
            await session.execute(
                update(PaymentDB)
                .where(
                    PaymentDB.payment_id == payment_id,
                    PaymentDB.status.in_([PaymentStatus.RECEIVED, PaymentStatus.BRIDGE_IN_PROGRESS]),
                )
                .values(status=PaymentStatus.SETTLED, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
        return await self.get_payment(payment_id)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def get_transfer(self, transfer_id: str) -> Optional[TransferRecord]:
        async with self._db.session() as session:
            row = await session.get(TransferDB, transfer_id)
            return TransferRecord.from_row(row) if row else None

    async def _transfer_for_payment(self, session: AsyncSession, payment_id: str) -> Optional[TransferDB]:
        result = await session.execute(
            select(TransferDB).where(TransferDB.payment_id == payment_id)
        )
        return result.scalar_one_or_none()

    async def get_transfer_for_payment(self, payment_id: str) -> Optional[TransferRecord]:
        async with self._db.session() as session:
            row = await self._transfer_for_payment(session, payment_id)
            return TransferRecord.from_row(row) if row else None

    async def get_active_transfer(self, payment_id: str) -> Optional[TransferRecord]:
        """The payment's transfer if it has not reached COMPLETED or FAILED."""
        async with self._db.session() as session:
            result = await session.execute(
                select(TransferDB).where(
                    TransferDB.payment_id == payment_id,
                    TransferDB.status.in_(ACTIVE_TRANSFER_STATUSES),
                )
            )
            row = result.scalar_one_or_none()
            return TransferRecord.from_row(row) if row else None

    async def _transition(
        self,
        session: AsyncSession,
        transfer_id: str,
        expected: Iterable[TransferStatus],
        *conditions,
        **values,
    ) -> bool:
        values.setdefault("updated_at", utcnow())
        result = await session.execute(
            update(TransferDB)
            .where(
                TransferDB.transfer_id == transfer_id,
                TransferDB.status.in_(list(expected)),
                *conditions,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _set_payment_status(
        self,
        session: AsyncSession,
        transfer_id: str,
        status: PaymentStatus,
        from_statuses: Sequence[PaymentStatus],
    ) -> None:
        payment_id = (
            await session.execute(select(TransferDB.payment_id).where(TransferDB.transfer_id == transfer_id))
        ).scalar_one()
        await session.execute(
            update(PaymentDB)
            .where(PaymentDB.payment_id == payment_id, PaymentDB.status.in_(list(from_statuses)))
            .values(status=status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def claim_burn(self, transfer_id: str, claim_id: str) -> bool:
        """Reserve the right to submit the burn. Exactly one caller wins."""
        now = utcnow()
        async with self._db.transaction() as session:
            return await self._transition(
                session,
                transfer_id,
                [TransferStatus.PENDING_BURN],
                TransferDB.burn_claim_id.is_(None),
                burn_claim_id=claim_id,
                burn_claimed_at=now,
                updated_at=now,
            )

    async def record_burn(self, transfer_id: str, claim_id: str, burn_tx_hash: str) -> bool:
        """PENDING_BURN -> PENDING_ATTESTATION and payment -> BRIDGE_IN_PROGRESS."""
        async with self._db.transaction() as session:
            won = await self._transition(
                session,
                transfer_id,
                [TransferStatus.PENDING_BURN],
                TransferDB.burn_claim_id == claim_id,
                burn_tx_hash=burn_tx_hash,
                status=TransferStatus.PENDING_ATTESTATION,
                error=None,
            )
            if won:
                await self._set_payment_status(
                    session, transfer_id, PaymentStatus.BRIDGE_IN_PROGRESS, [PaymentStatus.RECEIVED],
                )
            return won

    async def record_burn_failure(self, transfer_id: str, claim_id: str, error: str) -> bool:
        async with self._db.transaction() as session:
            won = await self._transition(
                session,
                transfer_id,
                [TransferStatus.PENDING_BURN],
                TransferDB.burn_claim_id == claim_id,
                status=TransferStatus.FAILED,
                error=error,
            )
            if won:
                await self._set_payment_status(
                    session, transfer_id, PaymentStatus.BRIDGE_FAILED,
                    [PaymentStatus.RECEIVED, PaymentStatus.BRIDGE_IN_PROGRESS],
                )
            return won

    async def record_attestation(self, transfer_id: str, attestation_id: str) -> bool:
        """PENDING_ATTESTATION -> PENDING_MINT, persisted before the mint call."""
        async with self._db.transaction() as session:
            return await self._transition(
                session,
                transfer_id,
                [TransferStatus.PENDING_ATTESTATION],
                attestation_id=attestation_id,
                status=TransferStatus.PENDING_MINT,
            )

    async def claim_mint_retry(self, transfer_id: str, stale_before: datetime) -> bool:
        """Take over a PENDING_MINT transfer whose last update is older than stale_before."""
        async with self._db.transaction() as session:
            return await self._transition(
                session,
                transfer_id,
                [TransferStatus.PENDING_MINT],
                TransferDB.updated_at < stale_before,
            )

    async def record_mint(self, transfer_id: str, mint_tx_hash: str) -> bool:
        """PENDING_MINT -> COMPLETED and payment -> SETTLED."""
        async with self._db.transaction() as session:
            won = await self._transition(
                session,
                transfer_id,
                [TransferStatus.PENDING_MINT],
                mint_tx_hash=mint_tx_hash,
                status=TransferStatus.COMPLETED,
                error=None,
            )
            if won:
                await self._set_payment_status(
                    session, transfer_id, PaymentStatus.SETTLED,
                    [PaymentStatus.RECEIVED, PaymentStatus.BRIDGE_IN_PROGRESS],
                )
            return won

    async def record_mint_failure(self, transfer_id: str, error: str) -> bool:
        """PENDING_MINT -> FAILED; the attestation id stays on the row."""
        async with self._db.transaction() as session:
            won = await self._transition(
                session,
                transfer_id,
                [TransferStatus.PENDING_MINT],
                status=TransferStatus.FAILED,
                error=error,
            )
            if won:
                await self._set_payment_status(
                    session, transfer_id, PaymentStatus.BRIDGE_FAILED,
                    [PaymentStatus.RECEIVED, PaymentStatus.BRIDGE_IN_PROGRESS],
                )
            return won

    async def record_orphaned_mint(self, transfer_id: str, mint_tx_hash: str, error: str) -> bool:
        """Attach a confirmed mint hash to a FAILED transfer that never recorded one."""
        async with self._db.transaction() as session:
            return await self._transition(
                session,
                transfer_id,
                [TransferStatus.FAILED],
                TransferDB.mint_tx_hash.is_(None),
                mint_tx_hash=mint_tx_hash,
                error=error,
            )

    async def list_transfers_by_status(
        self,
        statuses: Iterable[TransferStatus],
        limit: int = 50,
    ) -> list[TransferRecord]:
        """Oldest-updated first, so a bounded pass makes progress on everything."""
        async with self._db.session() as session:
            result = await session.execute(
                select(TransferDB)
                .where(TransferDB.status.in_(list(statuses)))
                .order_by(TransferDB.updated_at.asc())
                .limit(limit)
            )
            return [TransferRecord.from_row(r) for r in result.scalars()]

    async def find_stalled_transfers(self, older_than: datetime, limit: int = 50) -> list[TransferRecord]:
        """Transfers parked in PENDING_ATTESTATION since before older_than."""
        async with self._db.session() as session:
            result = await session.execute(
                select(TransferDB)
                .where(
                    TransferDB.status == TransferStatus.PENDING_ATTESTATION,
                    TransferDB.updated_at < older_than,
                )
                .order_by(TransferDB.updated_at.asc())
                .limit(limit)
            )
            return [TransferRecord.from_row(r) for r in result.scalars()]

    async def find_unpaid_completed_transfers(self, limit: int = 50) -> list[TransferRecord]:
        """Completed bridged transfers with no SENT payout linked to them."""
        sent_payout = exists().where(
            and_(
                PayoutDB.transfer_id == TransferDB.transfer_id,
                PayoutDB.status == PayoutStatus.SENT,
            )
        )
        async with self._db.session() as session:
            result = await session.execute(
                select(TransferDB)
                .where(
                    TransferDB.status == TransferStatus.COMPLETED,
                    TransferDB.burn_chain != TransferDB.mint_chain,
                    ~sent_payout,
                )
                .order_by(TransferDB.updated_at.asc())
                .limit(limit)
            )
            return [TransferRecord.from_row(r) for r in result.scalars()]

    # ------------------------------------------------------------------
    # Payouts
    # ------------------------------------------------------------------

    async def create_payout(
        self,
        *,
        merchant_id: str,
        destination_chain: Chain,
        destination_address: str,
        amount: Decimal,
        transfer_id: Optional[str] = None,
    ) -> PayoutRecord:
        now = utcnow()
        row = PayoutDB(
            payout_id=new_id("po"),
            merchant_id=merchant_id,
            transfer_id=transfer_id,
            destination_chain=destination_chain,
            destination_address=destination_address,
            amount=amount,
            status=PayoutStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        async with self._db.transaction() as session:
            session.add(row)
        return PayoutRecord.from_row(row)

    async def _finish_payout(self, payout_id: str, **values) -> PayoutRecord:
        async with self._db.transaction() as session:
            await session.execute(
                update(PayoutDB)
                .where(PayoutDB.payout_id == payout_id, PayoutDB.status == PayoutStatus.PENDING)
                .values(updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
        payout = await self.get_payout(payout_id)
        if payout is None:
            raise NotFoundError("Payout", payout_id)
        return payout

    async def mark_payout_sent(self, payout_id: str, tx_hash: str) -> PayoutRecord:
        return await self._finish_payout(payout_id, status=PayoutStatus.SENT, tx_hash=tx_hash)

    async def mark_payout_failed(self, payout_id: str, error: str) -> PayoutRecord:
        return await self._finish_payout(payout_id, status=PayoutStatus.FAILED, error=error)

    async def get_payout(self, payout_id: str) -> Optional[PayoutRecord]:
        async with self._db.session() as session:
            row = await session.get(PayoutDB, payout_id)
            return PayoutRecord.from_row(row) if row else None

    async def list_payouts(self, merchant_id: str, limit: int = 100) -> list[PayoutRecord]:
        """Newest first."""
        async with self._db.session() as session:
            result = await session.execute(
                select(PayoutDB)
                .where(PayoutDB.merchant_id == merchant_id)
                .order_by(PayoutDB.created_at.desc(), PayoutDB.payout_id.desc())
                .limit(limit)
            )
            return [PayoutRecord.from_row(r) for r in result.scalars()]

    async def list_payouts_for_transfer(self, transfer_id: str) -> list[PayoutRecord]:
        async with self._db.session() as session:
            result = await session.execute(
                select(PayoutDB)
                .where(PayoutDB.transfer_id == transfer_id)
                .order_by(PayoutDB.created_at.asc())
            )
            return [PayoutRecord.from_row(r) for r in result.scalars()]


__all__ = ["SettlementStore", "new_id"]
