"""Settlement services: registration, bridging and payouts."""

from .bridge import BridgeOrchestrator, BridgeResult
from .merchants import MerchantService
from .payments import PaymentDetails, PaymentService, RegistrationResult
from .payouts import PayoutService

__all__ = [
    "BridgeOrchestrator",
    "BridgeResult",
    "MerchantService",
    "PaymentDetails",
    "PaymentService",
    "PayoutService",
    "RegistrationResult",
]
