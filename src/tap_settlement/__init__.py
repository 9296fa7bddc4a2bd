"""Cross-chain USDC settlement: register deposits, bridge via burn/attest/mint, pay merchants."""

from .config import SettlementSettings, load_settings
from .container import SettlementContainer
from .exceptions import (
    AttestationNotReadyError,
    ChainMismatchError,
    ConfigurationError,
    NotFoundError,
    SettlementError,
    ValidationError,
)
from .models import (
    Chain,
    ChainFamily,
    MerchantRecord,
    PaymentRecord,
    PaymentStatus,
    PayoutRecord,
    PayoutStatus,
    TransferRecord,
    TransferStatus,
)
from .services import BridgeOrchestrator, BridgeResult, PaymentService, PayoutService, RegistrationResult
from .store import SettlementStore

__version__ = "0.1.0"

__all__ = [
    "AttestationNotReadyError",
    "BridgeOrchestrator",
    "BridgeResult",
    "Chain",
    "ChainFamily",
    "ChainMismatchError",
    "ConfigurationError",
    "MerchantRecord",
    "NotFoundError",
    "PaymentRecord",
    "PaymentService",
    "PaymentStatus",
    "PayoutRecord",
    "PayoutService",
    "PayoutStatus",
    "RegistrationResult",
    "SettlementContainer",
    "SettlementError",
    "SettlementSettings",
    "SettlementStore",
    "TransferRecord",
    "TransferStatus",
    "ValidationError",
    "load_settings",
]
