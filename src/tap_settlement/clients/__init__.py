"""External collaborators: bridge, chain clients and signing."""

from .bridge import BridgeClient, CircleCCTPBridgeClient, SimulatedBridgeClient
from .chains import (
    ChainClient,
    ChainClientRegistry,
    ContractCallSender,
    EvmChainClient,
    SolanaChainClient,
)
from .signer import SignerPort, SimulatedSigner

__all__ = [
    "BridgeClient",
    "ChainClient",
    "ChainClientRegistry",
    "CircleCCTPBridgeClient",
    "ContractCallSender",
    "EvmChainClient",
    "SignerPort",
    "SimulatedBridgeClient",
    "SimulatedSigner",
    "SolanaChainClient",
]
