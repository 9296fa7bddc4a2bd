"""Domain enums and immutable record snapshots for settlement entities.

Records are what services hand back to callers. ORM rows stay inside the
store; every read produces a fresh snapshot so callers never observe a row
mutating underneath them.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from .exceptions import ValidationError

# USDC carries 6 decimals on every supported chain
USDC_DECIMALS = 6
USDC_QUANTUM = Decimal("0.000001")
# Numeric(24, 6) leaves 18 integer digits
MAX_USDC_AMOUNT = Decimal(10) ** 18


class ChainFamily(str, enum.Enum):
    """How a chain executes token transfers."""
    ACCOUNT = "account"
    EVM = "evm"


class Chain(str, enum.Enum):
    """Chains a merchant can be paid on."""
    SOLANA = "SOLANA"
    ETHEREUM = "ETHEREUM"
    BASE = "BASE"

    @property
    def family(self) -> ChainFamily:
        return _CHAIN_FAMILIES[self]

    @classmethod
    def parse(cls, value: "Chain | str") -> "Chain":
        """Accept a Chain or its name in any case."""
        if isinstance(value, Chain):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValidationError(
                f"Unsupported chain '{value}'. Supported: {[c.value for c in cls]}",
                field="chain",
            ) from None


_CHAIN_FAMILIES: dict[Chain, ChainFamily] = {
    Chain.SOLANA: ChainFamily.ACCOUNT,
    Chain.ETHEREUM: ChainFamily.EVM,
    Chain.BASE: ChainFamily.EVM,
}


class PaymentStatus(str, enum.Enum):
    RECEIVED = "RECEIVED"
    BRIDGE_IN_PROGRESS = "BRIDGE_IN_PROGRESS"
    BRIDGE_FAILED = "BRIDGE_FAILED"
    SETTLED = "SETTLED"


class TransferStatus(str, enum.Enum):
    PENDING_BURN = "PENDING_BURN"
    PENDING_ATTESTATION = "PENDING_ATTESTATION"
    PENDING_MINT = "PENDING_MINT"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferStatus.COMPLETED, TransferStatus.FAILED)


ACTIVE_TRANSFER_STATUSES = (
    TransferStatus.PENDING_BURN,
    TransferStatus.PENDING_ATTESTATION,
    TransferStatus.PENDING_MINT,
)


class PayoutStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


def to_usdc_amount(value: Any, field: str = "amount") -> Decimal:
    """Parse a positive USDC amount, quantized to 6 decimals."""
    if isinstance(value, bool):
        raise ValidationError("Amount must be a decimal number", field=field)
    try:
        amount = Decimal(str(value).strip()) if not isinstance(value, Decimal) else value
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount '{value}'", field=field) from None
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount '{value}'", field=field)
    if amount <= 0:
        raise ValidationError("Amount must be positive", field=field)
    if amount >= MAX_USDC_AMOUNT:
        raise ValidationError(f"Amount '{value}' exceeds the supported maximum", field=field)
    try:
        quantized = amount.quantize(USDC_QUANTUM)
    except InvalidOperation:
        raise ValidationError(f"Invalid amount '{value}'", field=field) from None
    if quantized != amount:
        raise ValidationError(
            f"Amount '{value}' has more than {USDC_DECIMALS} decimal places",
            field=field,
        )
    return quantized


def to_minor_units(amount: Decimal) -> int:
    """Convert a USDC amount to its 6-decimal integer representation."""
    return int(amount * (10 ** USDC_DECIMALS))


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class MerchantRecord:
    merchant_id: str
    name: str
    payout_chain: Chain
    payout_address: str
    email: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Any) -> "MerchantRecord":
        return cls(
            merchant_id=row.merchant_id,
            name=row.name,
            payout_chain=Chain(row.payout_chain),
            payout_address=row.payout_address,
            email=row.email,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "merchant_id": self.merchant_id,
            "name": self.name,
            "email": self.email,
            "payout_chain": self.payout_chain.value,
            "payout_address": self.payout_address,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class PaymentRecord:
    """One incoming USDC deposit on a custodial address."""
    payment_id: str
    merchant_id: str
    source_chain: Chain
    source_tx_hash: str
    amount: Decimal
    status: PaymentStatus
    custodial_source_address: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def needs_bridge(self) -> bool:
        return self.status in (PaymentStatus.RECEIVED, PaymentStatus.BRIDGE_IN_PROGRESS)

    @classmethod
    def from_row(cls, row: Any) -> "PaymentRecord":
        return cls(
            payment_id=row.payment_id,
            merchant_id=row.merchant_id,
            source_chain=Chain(row.source_chain),
            source_tx_hash=row.source_tx_hash,
            amount=Decimal(row.amount).quantize(USDC_QUANTUM),
            status=PaymentStatus(row.status),
            custodial_source_address=row.custodial_source_address,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "merchant_id": self.merchant_id,
            "source_chain": self.source_chain.value,
            "source_tx_hash": self.source_tx_hash,
            "amount": str(self.amount),
            "status": self.status.value,
            "custodial_source_address": self.custodial_source_address,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class TransferRecord:
    """One bridging attempt for a payment."""
    transfer_id: str
    payment_id: str
    burn_chain: Chain
    mint_chain: Chain
    status: TransferStatus
    burn_tx_hash: Optional[str] = None
    attestation_id: Optional[str] = None
    mint_tx_hash: Optional[str] = None
    error: Optional[str] = None
    burn_claim_id: Optional[str] = None
    burn_claimed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_bridged(self) -> bool:
        return self.burn_chain != self.mint_chain

    @classmethod
    def from_row(cls, row: Any) -> "TransferRecord":
        return cls(
            transfer_id=row.transfer_id,
            payment_id=row.payment_id,
            burn_chain=Chain(row.burn_chain),
            mint_chain=Chain(row.mint_chain),
            status=TransferStatus(row.status),
            burn_tx_hash=row.burn_tx_hash,
            attestation_id=row.attestation_id,
            mint_tx_hash=row.mint_tx_hash,
            error=row.error,
            burn_claim_id=row.burn_claim_id,
            burn_claimed_at=as_utc(row.burn_claimed_at),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "transfer_id": self.transfer_id,
            "payment_id": self.payment_id,
            "burn_chain": self.burn_chain.value,
            "mint_chain": self.mint_chain.value,
            "status": self.status.value,
            "burn_tx_hash": self.burn_tx_hash,
            "attestation_id": self.attestation_id,
            "mint_tx_hash": self.mint_tx_hash,
            "error": self.error,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class PayoutRecord:
    """One outbound transfer to a merchant's payout address."""
    payout_id: str
    merchant_id: str
    destination_chain: Chain
    destination_address: str
    amount: Decimal
    status: PayoutStatus
    transfer_id: Optional[str] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Any) -> "PayoutRecord":
        return cls(
            payout_id=row.payout_id,
            merchant_id=row.merchant_id,
            destination_chain=Chain(row.destination_chain),
            destination_address=row.destination_address,
            amount=Decimal(row.amount).quantize(USDC_QUANTUM),
            status=PayoutStatus(row.status),
            transfer_id=row.transfer_id,
            tx_hash=row.tx_hash,
            error=row.error,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "payout_id": self.payout_id,
            "merchant_id": self.merchant_id,
            "transfer_id": self.transfer_id,
            "destination_chain": self.destination_chain.value,
            "destination_address": self.destination_address,
            "amount": str(self.amount),
            "status": self.status.value,
            "tx_hash": self.tx_hash,
            "error": self.error,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


__all__ = [
    "ACTIVE_TRANSFER_STATUSES",
    "Chain",
    "ChainFamily",
    "MAX_USDC_AMOUNT",
    "MerchantRecord",
    "PaymentRecord",
    "PaymentStatus",
    "PayoutRecord",
    "PayoutStatus",
    "TransferRecord",
    "TransferStatus",
    "USDC_DECIMALS",
    "as_utc",
    "to_minor_units",
    "to_usdc_amount",
    "utcnow",
]
