"""Settlement API routes: merchants, payments, transfers."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from ..container import SettlementContainer
from ..exceptions import NotFoundError
from ..models import MerchantRecord, PaymentRecord, PayoutRecord, TransferRecord
from ..services import BridgeResult


# Request/Response Models

class CreateMerchantRequest(BaseModel):
    """Request to onboard a merchant."""
    name: str = Field(..., min_length=1, description="Merchant display name")
    email: Optional[str] = Field(None, description="Contact email")
    payout_chain: str = Field(..., description="SOLANA, ETHEREUM or BASE")
    payout_address: str = Field(..., description="Address that receives payouts")


class IncomingPaymentRequest(BaseModel):
    """Deposit observed on a custodial address."""
    merchant_id: str
    source_chain: str
    source_tx_hash: str
    amount: Decimal = Field(..., description="USDC amount, up to 6 decimals")
    custodial_source_address: str


class ManualPayoutRequest(BaseModel):
    destination_chain: str
    amount: Decimal


class MerchantResponse(BaseModel):
    merchant_id: str
    name: str
    email: Optional[str]
    payout_chain: str
    payout_address: str
    created_at: Optional[datetime]

    @classmethod
    def from_record(cls, merchant: MerchantRecord) -> "MerchantResponse":
        return cls(
            merchant_id=merchant.merchant_id,
            name=merchant.name,
            email=merchant.email,
            payout_chain=merchant.payout_chain.value,
            payout_address=merchant.payout_address,
            created_at=merchant.created_at,
        )


class PaymentResponse(BaseModel):
    payment_id: str
    merchant_id: str
    source_chain: str
    source_tx_hash: str
    amount: str
    status: str
    custodial_source_address: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    @classmethod
    def from_record(cls, payment: PaymentRecord) -> "PaymentResponse":
        return cls(
            payment_id=payment.payment_id,
            merchant_id=payment.merchant_id,
            source_chain=payment.source_chain.value,
            source_tx_hash=payment.source_tx_hash,
            amount=str(payment.amount),
            status=payment.status.value,
            custodial_source_address=payment.custodial_source_address,
            created_at=payment.created_at,
            updated_at=payment.updated_at,
        )


class TransferResponse(BaseModel):
    transfer_id: str
    payment_id: str
    burn_chain: str
    mint_chain: str
    status: str
    burn_tx_hash: Optional[str]
    attestation_id: Optional[str]
    mint_tx_hash: Optional[str]
    error: Optional[str]
    updated_at: Optional[datetime]

    @classmethod
    def from_record(cls, transfer: TransferRecord) -> "TransferResponse":
        return cls(
            transfer_id=transfer.transfer_id,
            payment_id=transfer.payment_id,
            burn_chain=transfer.burn_chain.value,
            mint_chain=transfer.mint_chain.value,
            status=transfer.status.value,
            burn_tx_hash=transfer.burn_tx_hash,
            attestation_id=transfer.attestation_id,
            mint_tx_hash=transfer.mint_tx_hash,
            error=transfer.error,
            updated_at=transfer.updated_at,
        )


class PayoutResponse(BaseModel):
    payout_id: str
    merchant_id: str
    transfer_id: Optional[str]
    destination_chain: str
    destination_address: str
    amount: str
    status: str
    tx_hash: Optional[str]
    error: Optional[str]
    created_at: Optional[datetime]

    @classmethod
    def from_record(cls, payout: PayoutRecord) -> "PayoutResponse":
        return cls(
            payout_id=payout.payout_id,
            merchant_id=payout.merchant_id,
            transfer_id=payout.transfer_id,
            destination_chain=payout.destination_chain.value,
            destination_address=payout.destination_address,
            amount=str(payout.amount),
            status=payout.status.value,
            tx_hash=payout.tx_hash,
            error=payout.error,
            created_at=payout.created_at,
        )


class RegistrationResponse(BaseModel):
    created: bool
    payment: PaymentResponse
    transfer: Optional[TransferResponse]
    payout: Optional[PayoutResponse] = None


class PaymentDetailsResponse(BaseModel):
    payment: PaymentResponse
    merchant: MerchantResponse
    transfer: Optional[TransferResponse]


class BridgeResponse(BaseModel):
    message: str
    payment: PaymentResponse
    transfer: Optional[TransferResponse]
    payout: Optional[PayoutResponse] = None

    @classmethod
    def from_result(cls, result: BridgeResult) -> "BridgeResponse":
        return cls(
            message=result.message,
            payment=PaymentResponse.from_record(result.payment),
            transfer=TransferResponse.from_record(result.transfer) if result.transfer else None,
            payout=PayoutResponse.from_record(result.payout) if result.payout else None,
        )


# Dependencies

def get_container() -> SettlementContainer:
    """Dependency injection placeholder."""
    raise NotImplementedError("Must be overridden")


# Routes

merchants_router = APIRouter(prefix="/merchants", tags=["merchants"])
payments_router = APIRouter(prefix="/payments", tags=["payments"])
transfers_router = APIRouter(prefix="/transfers", tags=["transfers"])


@merchants_router.post("", response_model=MerchantResponse, status_code=status.HTTP_201_CREATED)
async def create_merchant(
    request: CreateMerchantRequest,
    container: SettlementContainer = Depends(get_container),
):
    merchant = await container.merchant_service.create_merchant(
        name=request.name,
        payout_chain=request.payout_chain,
        payout_address=request.payout_address,
        email=request.email,
    )
    return MerchantResponse.from_record(merchant)


@merchants_router.get("/{merchant_id}", response_model=MerchantResponse)
async def get_merchant(
    merchant_id: str,
    container: SettlementContainer = Depends(get_container),
):
    return MerchantResponse.from_record(await container.merchant_service.get_merchant(merchant_id))


@merchants_router.get("/{merchant_id}/payouts", response_model=List[PayoutResponse])
async def list_merchant_payouts(
    merchant_id: str,
    limit: int = Query(100, ge=1, le=500),
    container: SettlementContainer = Depends(get_container),
):
    """Payouts for a merchant, newest first."""
    payouts = await container.payout_service.list_merchant_payouts(merchant_id, limit=limit)
    return [PayoutResponse.from_record(p) for p in payouts]


@merchants_router.post("/{merchant_id}/payout", response_model=PayoutResponse, status_code=status.HTTP_201_CREATED)
async def create_manual_payout(
    merchant_id: str,
    request: ManualPayoutRequest,
    container: SettlementContainer = Depends(get_container),
):
    """Operator-triggered payout, not linked to any transfer."""
    payout = await container.payout_service.create_and_send_payout(
        merchant_id, request.destination_chain, request.amount,
    )
    return PayoutResponse.from_record(payout)


@payments_router.post("/incoming", response_model=RegistrationResponse)
async def register_incoming_payment(
    request: IncomingPaymentRequest,
    container: SettlementContainer = Depends(get_container),
):
    """Register a deposit. Repeated deliveries return the stored payment."""
    result = await container.payment_service.register_incoming_payment(
        merchant_id=request.merchant_id,
        source_chain=request.source_chain,
        source_tx_hash=request.source_tx_hash,
        amount=request.amount,
        custodial_source_address=request.custodial_source_address,
    )
    return RegistrationResponse(
        created=result.created,
        payment=PaymentResponse.from_record(result.payment),
        transfer=TransferResponse.from_record(result.transfer) if result.transfer else None,
        payout=PayoutResponse.from_record(result.payout) if result.payout else None,
    )


@payments_router.get("/{payment_id}", response_model=PaymentDetailsResponse)
async def get_payment(
    payment_id: str,
    container: SettlementContainer = Depends(get_container),
):
    details = await container.payment_service.get_payment_details(payment_id)
    return PaymentDetailsResponse(
        payment=PaymentResponse.from_record(details.payment),
        merchant=MerchantResponse.from_record(details.merchant),
        transfer=TransferResponse.from_record(details.transfer) if details.transfer else None,
    )


@payments_router.post("/{payment_id}/bridge", response_model=BridgeResponse)
async def start_bridge(
    payment_id: str,
    container: SettlementContainer = Depends(get_container),
):
    result = await container.orchestrator.start_bridge_for_payment(payment_id)
    return BridgeResponse.from_result(result)


@transfers_router.get("/{transfer_id}", response_model=TransferResponse)
async def get_transfer(
    transfer_id: str,
    container: SettlementContainer = Depends(get_container),
):
    transfer = await container.store.get_transfer(transfer_id)
    if transfer is None:
        raise NotFoundError("Transfer", transfer_id)
    return TransferResponse.from_record(transfer)


@transfers_router.post("/{transfer_id}/mint", response_model=BridgeResponse)
async def poll_and_mint(
    transfer_id: str,
    container: SettlementContainer = Depends(get_container),
):
    """Poll the attestation and mint; answers 202 while the attestation is pending."""
    result = await container.orchestrator.poll_attestation_and_mint(transfer_id)
    return BridgeResponse.from_result(result)


__all__ = [
    "get_container",
    "merchants_router",
    "payments_router",
    "transfers_router",
]
