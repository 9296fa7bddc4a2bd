"""Circle CCTP V2 domains, contract addresses and USDC token addresses.

V2 uses unified contract addresses across all EVM chains.

Reference: https://developers.circle.com/cctp/evm-smart-contracts
"""
from __future__ import annotations

from .exceptions import UnsupportedChainError
from .models import Chain

# CCTP domain ids assigned by Circle
CCTP_DOMAINS: dict[Chain, int] = {
    Chain.ETHEREUM: 0,
    Chain.SOLANA: 5,
    Chain.BASE: 6,
}

DOMAIN_TO_CHAIN: dict[int, Chain] = {v: k for k, v in CCTP_DOMAINS.items()}

# TokenMessengerV2 and MessageTransmitterV2 share one address on every EVM chain
TOKEN_MESSENGER_V2 = "0x28b5a0e9C621a5BadaA536219b3a228C8168cf5d"
MESSAGE_TRANSMITTER_V2 = "0x81D40F21F12A8F0E3252Bccb954D722d4c464B64"

# Mainnet USDC (ERC-20 contract on EVM chains, SPL mint on Solana)
USDC_ADDRESSES: dict[Chain, str] = {
    Chain.ETHEREUM: "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
    Chain.BASE: "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    Chain.SOLANA: "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
}

DEFAULT_RPC_URLS: dict[Chain, str] = {
    Chain.ETHEREUM: "https://eth.llamarpc.com",
    Chain.BASE: "https://mainnet.base.org",
    Chain.SOLANA: "https://api.mainnet-beta.solana.com",
}

EVM_CHAIN_IDS: dict[Chain, int] = {
    Chain.ETHEREUM: 1,
    Chain.BASE: 8453,
}

CIRCLE_ATTESTATION_API_URL = "https://iris-api.circle.com/v2/messages"
CIRCLE_ATTESTATION_API_SANDBOX_URL = "https://iris-api-sandbox.circle.com/v2/messages"

# ABI function signatures; selectors are derived with keccak
ERC20_TRANSFER_SIGNATURE = "transfer(address,uint256)"
ERC20_APPROVE_SIGNATURE = "approve(address,uint256)"
ERC20_BALANCE_OF_SIGNATURE = "balanceOf(address)"
DEPOSIT_FOR_BURN_SIGNATURE = "depositForBurn(uint256,uint32,bytes32,address,bytes32,uint256,uint32)"
RECEIVE_MESSAGE_SIGNATURE = "receiveMessage(bytes,bytes)"

# depositForBurn V2: 1000 = fast transfer, 2000 = standard finality
FINALITY_THRESHOLD_STANDARD = 2000


def get_cctp_domain(chain: Chain) -> int:
    """Get CCTP domain id for a chain."""
    domain = CCTP_DOMAINS.get(chain)
    if domain is None:
        raise UnsupportedChainError(chain.value, f"Chain {chain.value} is not supported by CCTP")
    return domain


__all__ = [
    "CCTP_DOMAINS",
    "CIRCLE_ATTESTATION_API_SANDBOX_URL",
    "CIRCLE_ATTESTATION_API_URL",
    "DEFAULT_RPC_URLS",
    "DEPOSIT_FOR_BURN_SIGNATURE",
    "DOMAIN_TO_CHAIN",
    "ERC20_APPROVE_SIGNATURE",
    "ERC20_BALANCE_OF_SIGNATURE",
    "ERC20_TRANSFER_SIGNATURE",
    "EVM_CHAIN_IDS",
    "FINALITY_THRESHOLD_STANDARD",
    "MESSAGE_TRANSMITTER_V2",
    "RECEIVE_MESSAGE_SIGNATURE",
    "TOKEN_MESSENGER_V2",
    "USDC_ADDRESSES",
    "get_cctp_domain",
]
