"""
SQLAlchemy models for settlement storage.

String ids are the primary keys. Amounts are Numeric(24, 6) so USDC's six
decimals round-trip exactly; enums are stored as strings so the schema is
identical on SQLite and PostgreSQL.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

from ..models import Chain, PaymentStatus, PayoutStatus, TransferStatus

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls):
    return SQLEnum(enum_cls, native_enum=False, length=32, validate_strings=True)


# ============ Merchant Model ============

class MerchantDB(Base):
    """Merchant receiving settled funds."""

    __tablename__ = "merchants"

    merchant_id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255))

    payout_chain = Column(_enum(Chain), nullable=False)
    payout_address = Column(String(128), nullable=False)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    payments = relationship("PaymentDB", back_populates="merchant")
    payouts = relationship("PayoutDB", back_populates="merchant")


# ============ Payment Model ============

class PaymentDB(Base):
    """Incoming USDC deposit on a custodial address."""

    __tablename__ = "payments"

    payment_id = Column(String(64), primary_key=True)
    merchant_id = Column(String(64), ForeignKey("merchants.merchant_id"), nullable=False, index=True)

    source_chain = Column(_enum(Chain), nullable=False)
    # Idempotency key for registration
    source_tx_hash = Column(String(128), unique=True, nullable=False)
    amount = Column(Numeric(24, 6), nullable=False)
    status = Column(_enum(PaymentStatus), nullable=False)
    custodial_source_address = Column(String(128), nullable=False)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    merchant = relationship("MerchantDB", back_populates="payments")
    transfer = relationship("TransferDB", back_populates="payment", uselist=False)

    __table_args__ = (
        Index("ix_payments_status", "status"),
    )


# ============ Transfer Model ============

class TransferDB(Base):
    """Bridging attempt for a payment: burn, attest, mint."""

    __tablename__ = "transfers"

    transfer_id = Column(String(64), primary_key=True)
    payment_id = Column(String(64), ForeignKey("payments.payment_id"), unique=True, nullable=False)

    burn_chain = Column(_enum(Chain), nullable=False)
    mint_chain = Column(_enum(Chain), nullable=False)

    burn_tx_hash = Column(String(128))
    attestation_id = Column(Text)
    mint_tx_hash = Column(String(128))

    status = Column(_enum(TransferStatus), nullable=False)
    error = Column(Text)

    # Set once by the invocation allowed to submit the burn
    burn_claim_id = Column(String(64))
    burn_claimed_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    payment = relationship("PaymentDB", back_populates="transfer")

    __table_args__ = (
        Index("ix_transfers_status_updated", "status", "updated_at"),
    )


# ============ Payout Model ============

class PayoutDB(Base):
    """Outbound USDC transfer to a merchant."""

    __tablename__ = "payouts"

    payout_id = Column(String(64), primary_key=True)
    merchant_id = Column(String(64), ForeignKey("merchants.merchant_id"), nullable=False, index=True)
    transfer_id = Column(String(64), ForeignKey("transfers.transfer_id"), index=True)

    destination_chain = Column(_enum(Chain), nullable=False)
    # Snapshot of the merchant's payout address at creation
    destination_address = Column(String(128), nullable=False)
    amount = Column(Numeric(24, 6), nullable=False)

    tx_hash = Column(String(128))
    status = Column(_enum(PayoutStatus), nullable=False)
    error = Column(Text)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    merchant = relationship("MerchantDB", back_populates="payouts")

    __table_args__ = (
        Index("ix_payouts_merchant_created", "merchant_id", "created_at"),
    )
