"""Chain client interface and family registry."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Iterable

from ...exceptions import UnsupportedChainError
from ...models import Chain, ChainFamily

logger = logging.getLogger(__name__)


class ChainClient(ABC):
    """Sends USDC and reads USDC balances for one chain family."""

    family: ChainFamily

    @abstractmethod
    async def send_usdc(self, chain: Chain, destination_address: str, amount: Decimal) -> str:
        """Transfer USDC from the custodial wallet; returns the tx hash."""

    @abstractmethod
    async def get_usdc_balance(self, chain: Chain, address: str) -> Decimal:
        """USDC held by address on chain."""

    async def close(self) -> None:
        return None

    def _require_family(self, chain: Chain) -> None:
        if chain.family is not self.family:
            raise UnsupportedChainError(
                chain.value,
                f"{type(self).__name__} handles {self.family.value} chains, not {chain.value}",
            )


class ChainClientRegistry:
    """Looks up the client for a chain by its family."""

    def __init__(self, clients: Iterable[ChainClient] = ()):
        self._clients: Dict[ChainFamily, ChainClient] = {}
        for client in clients:
            self.register(client)

    def register(self, client: ChainClient) -> None:
        self._clients[client.family] = client

    def for_chain(self, chain: Chain) -> ChainClient:
        client = self._clients.get(chain.family)
        if client is None:
            raise UnsupportedChainError(
                chain.value, f"No chain client registered for {chain.family.value} chains"
            )
        return client

    def __contains__(self, family: ChainFamily) -> bool:
        return family in self._clients

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()


class ContractCallSender(ABC):
    """Submits a contract call from the custodial wallet on an EVM chain."""

    @abstractmethod
    async def send_contract_call(self, chain: Chain, to: str, data: str) -> str:
        """Sign and broadcast a call to contract `to`; returns the tx hash."""


__all__ = ["ChainClient", "ChainClientRegistry", "ContractCallSender"]
