"""Per-family chain clients used for merchant payouts."""

from .base import ChainClient, ChainClientRegistry, ContractCallSender
from .evm import EvmChainClient, EvmRPCClient
from .solana import SolanaChainClient, SolanaRPCClient

__all__ = [
    "ChainClient",
    "ChainClientRegistry",
    "ContractCallSender",
    "EvmChainClient",
    "EvmRPCClient",
    "SolanaChainClient",
    "SolanaRPCClient",
]
