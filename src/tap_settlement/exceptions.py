"""Exception hierarchy for the settlement core.

Every error raised by the core inherits from SettlementError so the API layer
can map it to a status code and a structured body:

    try:
        await orchestrator.poll_attestation_and_mint(transfer_id)
    except AttestationNotReadyError:
        ...  # poll again later
    except SettlementError as e:
        return JSONResponse(status_code=e.http_status, content=e.to_dict())

All exceptions have:
- error_code: machine-readable code (e.g. "VALIDATION_ERROR")
- http_status: status code for API responses
- message: human-readable message
- details: optional context dictionary
- retryable: whether the same call may succeed later without intervention
"""
from __future__ import annotations

from typing import Any, Optional


class SettlementError(Exception):
    """Base exception for all settlement errors."""

    error_code: str = "SETTLEMENT_ERROR"
    http_status: int = 500
    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        if self.retryable:
            result["retryable"] = True
        return result


# =============================================================================
# Input errors (4xx)
# =============================================================================

class ValidationError(SettlementError):
    """Invalid input data or parameters."""

    error_code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details)


class ChainMismatchError(ValidationError):
    """Payout requested on a chain other than the merchant's payout chain."""

    error_code = "CHAIN_MISMATCH"

    def __init__(self, merchant_id: str, expected: str, requested: str) -> None:
        super().__init__(
            f"Merchant '{merchant_id}' is paid out on {expected}, not {requested}",
            field="destination_chain",
            details={"expected": expected, "requested": requested},
        )


class NotFoundError(SettlementError):
    """Requested resource not found."""

    error_code = "NOT_FOUND"
    http_status = 404

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        message = f"{resource_type} '{resource_id}' not found"
        details = details or {}
        details["resource_type"] = resource_type
        details["resource_id"] = resource_id
        super().__init__(message, details=details)


class ConflictError(SettlementError):
    """Resource conflict (duplicate or concurrent modification)."""

    error_code = "CONFLICT"
    http_status = 409


class ConfigurationError(SettlementError):
    """Required configuration is missing or invalid."""

    error_code = "CONFIGURATION_ERROR"
    http_status = 500


# =============================================================================
# Collaborator errors
# =============================================================================

class AttestationNotReadyError(SettlementError):
    """The bridge has not produced an attestation for this burn yet."""

    error_code = "ATTESTATION_NOT_READY"
    http_status = 202
    retryable = True

    def __init__(self, burn_tx_hash: str, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"Attestation for burn {burn_tx_hash} is not ready yet",
            details={"burn_tx_hash": burn_tx_hash},
        )
        self.burn_tx_hash = burn_tx_hash


class BridgeClientError(SettlementError):
    """Burn, attestation or mint call failed at the bridge."""

    error_code = "BRIDGE_ERROR"
    http_status = 502

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        chain: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if operation:
            details["operation"] = operation
        if chain:
            details["chain"] = chain
        super().__init__(message, details=details)


class UnsupportedChainError(SettlementError):
    """No client or contract is configured for the requested chain."""

    error_code = "UNSUPPORTED_CHAIN"
    http_status = 400

    def __init__(self, chain: str, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"Chain '{chain}' is not supported here",
            details={"chain": chain},
        )


class ChainClientError(SettlementError):
    """Sending USDC or reading a balance failed on chain."""

    error_code = "CHAIN_ERROR"
    http_status = 502

    def __init__(
        self,
        message: str,
        chain: Optional[str] = None,
        tx_hash: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if chain:
            details["chain"] = chain
        if tx_hash:
            details["tx_hash"] = tx_hash
        super().__init__(message, details=details)


class RPCError(ChainClientError):
    """JSON-RPC node returned an error object."""

    error_code = "RPC_ERROR"

    def __init__(
        self,
        message: str,
        chain: Optional[str] = None,
        code: Optional[int] = None,
        method: Optional[str] = None,
    ) -> None:
        details: dict[str, Any] = {}
        if code is not None:
            details["rpc_code"] = code
        if method:
            details["method"] = method
        super().__init__(message, chain=chain, details=details)
        self.code = code


__all__ = [
    "AttestationNotReadyError",
    "BridgeClientError",
    "ChainClientError",
    "ChainMismatchError",
    "ConfigurationError",
    "ConflictError",
    "NotFoundError",
    "RPCError",
    "SettlementError",
    "UnsupportedChainError",
    "ValidationError",
]
