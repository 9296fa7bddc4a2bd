"""Bridge clients: burn USDC on one chain, attest, mint on another.

Circle CCTP V2 flow:
1. Approve USDC to TokenMessenger on the source chain
2. Call depositForBurn on the source TokenMessenger
3. Wait for the Circle attestation (~13-20 minutes)
4. Call receiveMessage on the destination MessageTransmitter
"""
from __future__ import annotations

import hashlib
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Mapping, Optional

import httpx

from ..constants import (
    DEPOSIT_FOR_BURN_SIGNATURE,
    FINALITY_THRESHOLD_STANDARD,
    MESSAGE_TRANSMITTER_V2,
    RECEIVE_MESSAGE_SIGNATURE,
    TOKEN_MESSENGER_V2,
    USDC_ADDRESSES,
    get_cctp_domain,
)
from ..exceptions import (
    AttestationNotReadyError,
    BridgeClientError,
    ConfigurationError,
    UnsupportedChainError,
    ValidationError,
)
from ..logging_config import mask_address
from ..models import Chain, ChainFamily, to_minor_units
from .chains.base import ContractCallSender
from .chains.evm import (
    encode_address,
    encode_erc20_approve,
    encode_uint,
    function_selector,
    is_evm_address,
)

logger = logging.getLogger(__name__)

_ZERO_WORD = "0" * 64


class BridgeClient(ABC):
    """Burn, attestation and mint capability for cross-chain USDC."""

    @abstractmethod
    async def burn_usdc(
        self,
        chain: Chain,
        amount: Decimal,
        custodial_address: str,
        *,
        destination_chain: Optional[Chain] = None,
        mint_recipient: Optional[str] = None,
    ) -> str:
        """Burn amount from the custodial address on chain; returns the burn tx hash."""

    @abstractmethod
    async def get_attestation(self, burn_tx_hash: str, *, source_chain: Optional[Chain] = None) -> str:
        """Attestation id for a burn; raises AttestationNotReadyError while pending."""

    @abstractmethod
    async def mint_usdc(self, chain: Chain, attestation_id: str, recipient_address: str) -> str:
        """Mint on chain using an attestation; returns the mint tx hash."""

    async def close(self) -> None:
        return None


class SimulatedBridgeClient(BridgeClient):
    """Deterministic bridge for development and tests.

    Attestations become available after ``not_ready_polls`` calls to
    get_attestation for a given burn.
    """

    def __init__(self, not_ready_polls: int = 0):
        self.not_ready_polls = not_ready_polls
        self.burn_count = 0
        self.mint_count = 0
        self._polls: Dict[str, int] = {}

    @staticmethod
    def _digest(*parts: object) -> str:
        return hashlib.sha256(":".join(str(p) for p in parts).encode()).hexdigest()

    async def burn_usdc(
        self,
        chain: Chain,
        amount: Decimal,
        custodial_address: str,
        *,
        destination_chain: Optional[Chain] = None,
        mint_recipient: Optional[str] = None,
    ) -> str:
        self.burn_count += 1
        burn_tx_hash = "0x" + self._digest("burn", chain.value, amount, custodial_address, self.burn_count)
        self._polls[burn_tx_hash] = 0
        logger.info("[SIMULATED] Burned %s USDC on %s: %s", amount, chain.value, burn_tx_hash)
        return burn_tx_hash

    async def get_attestation(self, burn_tx_hash: str, *, source_chain: Optional[Chain] = None) -> str:
        polls = self._polls.get(burn_tx_hash, 0)
        if polls < self.not_ready_polls:
            self._polls[burn_tx_hash] = polls + 1
            raise AttestationNotReadyError(burn_tx_hash)
        return "sim_att_" + self._digest("attest", burn_tx_hash)[:32]

    async def mint_usdc(self, chain: Chain, attestation_id: str, recipient_address: str) -> str:
        self.mint_count += 1
        mint_tx_hash = "0x" + self._digest("mint", chain.value, attestation_id, recipient_address)
        logger.info("[SIMULATED] Minted on %s to %s: %s", chain.value, mask_address(recipient_address), mint_tx_hash)
        return mint_tx_hash


# ---------------------------------------------------------------------------
# Circle CCTP V2
# ---------------------------------------------------------------------------

def encode_deposit_for_burn(
    amount: int,
    destination_domain: int,
    mint_recipient: str,
    burn_token: str,
    max_fee: int = 0,
    min_finality_threshold: int = FINALITY_THRESHOLD_STANDARD,
) -> str:
    """Encode depositForBurn(uint256, uint32, bytes32, address, bytes32, uint256, uint32).

    destinationCaller is left as bytes32(0) so anyone may relay the message.
    """
    return (
        f"0x{function_selector(DEPOSIT_FOR_BURN_SIGNATURE)}"
        f"{encode_uint(amount)}"
        f"{encode_uint(destination_domain)}"
        f"{encode_address(mint_recipient)}"
        f"{encode_address(burn_token)}"
        f"{_ZERO_WORD}"
        f"{encode_uint(max_fee)}"
        f"{encode_uint(min_finality_threshold)}"
    )


def _encode_bytes(data: bytes) -> str:
    padded_len = ((len(data) + 31) // 32) * 32
    return encode_uint(len(data)) + data.hex().ljust(padded_len * 2, "0")


def encode_receive_message(message: bytes, attestation: bytes) -> str:
    """Encode receiveMessage(bytes, bytes) call."""
    # Two dynamic params: offsets are measured from the start of the args
    first = _encode_bytes(message)
    offset1 = 64
    offset2 = offset1 + len(first) // 2
    return (
        f"0x{function_selector(RECEIVE_MESSAGE_SIGNATURE)}"
        f"{encode_uint(offset1)}{encode_uint(offset2)}"
        f"{first}{_encode_bytes(attestation)}"
    )


def split_attestation_id(attestation_id: str) -> tuple[bytes, bytes]:
    """Split "<message_hex>:<attestation_hex>" into raw bytes."""
    message_hex, sep, attestation_hex = attestation_id.partition(":")
    if not sep or not message_hex or not attestation_hex:
        raise ValidationError(
            "Attestation id must look like '<message_hex>:<attestation_hex>'", field="attestation_id"
        )
    try:
        return (
            bytes.fromhex(message_hex.removeprefix("0x")),
            bytes.fromhex(attestation_hex.removeprefix("0x")),
        )
    except ValueError:
        raise ValidationError("Attestation id is not hex encoded", field="attestation_id") from None


class CircleCCTPBridgeClient(BridgeClient):
    """CCTP V2 between EVM chains; contract calls go through a ContractCallSender."""

    def __init__(
        self,
        sender: ContractCallSender,
        *,
        attestation_url: str,
        mint_recipients: Optional[Mapping[Chain, str]] = None,
        usdc_addresses: Optional[Mapping[Chain, str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        max_fee: int = 0,
        min_finality_threshold: int = FINALITY_THRESHOLD_STANDARD,
    ):
        self._sender = sender
        self._attestation_url = attestation_url.rstrip("/")
        self._mint_recipients = {k: v for k, v in (mint_recipients or {}).items() if v}
        self._usdc_addresses = dict(usdc_addresses or USDC_ADDRESSES)
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._max_fee = max_fee
        self._min_finality_threshold = min_finality_threshold

    @staticmethod
    def _require_evm(chain: Chain) -> None:
        if chain.family is not ChainFamily.EVM:
            raise UnsupportedChainError(chain.value, f"CCTP bridging from or to {chain.value} is not supported")

    async def burn_usdc(
        self,
        chain: Chain,
        amount: Decimal,
        custodial_address: str,
        *,
        destination_chain: Optional[Chain] = None,
        mint_recipient: Optional[str] = None,
    ) -> str:
        self._require_evm(chain)
        if destination_chain is None:
            raise ValidationError("CCTP burn needs a destination chain", field="destination_chain")
        self._require_evm(destination_chain)
        if destination_chain == chain:
            raise ValidationError("Source and destination chains must be different", field="destination_chain")

        recipient = mint_recipient or self._mint_recipients.get(destination_chain)
        if not recipient:
            raise ConfigurationError(f"No mint recipient configured for {destination_chain.value}")
        if not is_evm_address(recipient):
            raise ValidationError(f"Invalid mint recipient '{recipient}'", field="mint_recipient")

        usdc_address = self._usdc_addresses[chain]
        amount_minor = to_minor_units(amount)

        logger.info("Approving %s USDC to TokenMessenger on %s from %s",
                    amount, chain.value, mask_address(custodial_address))
        await self._sender.send_contract_call(
            chain, usdc_address, encode_erc20_approve(TOKEN_MESSENGER_V2, amount_minor)
        )

        deposit_data = encode_deposit_for_burn(
            amount=amount_minor,
            destination_domain=get_cctp_domain(destination_chain),
            mint_recipient=recipient,
            burn_token=usdc_address,
            max_fee=self._max_fee,
            min_finality_threshold=self._min_finality_threshold,
        )
        burn_tx_hash = await self._sender.send_contract_call(chain, TOKEN_MESSENGER_V2, deposit_data)
        logger.info("depositForBurn submitted on %s: %s", chain.value, burn_tx_hash)
        return burn_tx_hash

    async def get_attestation(self, burn_tx_hash: str, *, source_chain: Optional[Chain] = None) -> str:
        if source_chain is None:
            raise ValidationError("Attestation lookup needs the source chain", field="source_chain")
        url = f"{self._attestation_url}/{get_cctp_domain(source_chain)}"
        try:
            resp = await self._http_client.get(url, params={"transactionHash": burn_tx_hash})
        except httpx.HTTPError as e:
            raise BridgeClientError(f"Attestation request failed: {e}", operation="attestation",
                                    chain=source_chain.value) from e

        # Iris answers 404 until it has indexed the burn
        if resp.status_code == 404:
            raise AttestationNotReadyError(burn_tx_hash)
        if resp.status_code != 200:
            raise BridgeClientError(
                f"Attestation API returned HTTP {resp.status_code}",
                operation="attestation",
                chain=source_chain.value,
            )

        messages = resp.json().get("messages") or []
        if not messages:
            raise AttestationNotReadyError(burn_tx_hash)
        entry = messages[0]
        attestation = entry.get("attestation")
        if entry.get("status") != "complete" or not attestation or attestation == "PENDING":
            raise AttestationNotReadyError(
                burn_tx_hash, f"Attestation for burn {burn_tx_hash} is {entry.get('status', 'pending')}"
            )
        return f"{entry['message']}:{attestation}"

    async def mint_usdc(self, chain: Chain, attestation_id: str, recipient_address: str) -> str:
        self._require_evm(chain)
        message, attestation = split_attestation_id(attestation_id)
        mint_tx_hash = await self._sender.send_contract_call(
            chain, MESSAGE_TRANSMITTER_V2, encode_receive_message(message, attestation)
        )
        logger.info("receiveMessage submitted on %s for %s: %s",
                    chain.value, mask_address(recipient_address), mint_tx_hash)
        return mint_tx_hash

    async def close(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()


__all__ = [
    "BridgeClient",
    "CircleCCTPBridgeClient",
    "SimulatedBridgeClient",
    "encode_deposit_for_burn",
    "encode_receive_message",
    "split_attestation_id",
]
