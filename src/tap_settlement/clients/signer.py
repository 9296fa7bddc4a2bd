"""Signing port for custodial wallets.

Key management lives outside this service; chain clients only hand an
unsigned transaction to a SignerPort and broadcast what comes back.
"""
from __future__ import annotations

import base64
import hashlib
import json
import logging
import secrets
from abc import ABC, abstractmethod
from typing import Any, Dict

from ..models import Chain, ChainFamily

logger = logging.getLogger(__name__)


class SignerPort(ABC):
    """Abstract interface for custodial signing providers."""

    @abstractmethod
    async def sign_transaction(self, chain: Chain, unsigned_tx: Dict[str, Any]) -> str:
        """Sign a transaction; hex for EVM chains, base64 for Solana."""

    @abstractmethod
    async def get_address(self, chain: Chain) -> str:
        """Custodial address used as sender on chain."""


class SimulatedSigner(SignerPort):
    """Signer for development: random addresses, opaque payloads."""

    def __init__(self, addresses: Dict[Chain, str] | None = None):
        self._addresses: Dict[Chain, str] = dict(addresses or {})

    async def sign_transaction(self, chain: Chain, unsigned_tx: Dict[str, Any]) -> str:
        digest = hashlib.sha256(json.dumps(unsigned_tx, sort_keys=True, default=str).encode()).digest()
        if chain.family is ChainFamily.EVM:
            return "0x" + digest.hex()
        return base64.b64encode(digest).decode()

    async def get_address(self, chain: Chain) -> str:
        return self.address_for(chain)

    def address_for(self, chain: Chain) -> str:
        if chain not in self._addresses:
            if chain.family is ChainFamily.EVM:
                self._addresses[chain] = "0x" + secrets.token_hex(20)
            else:
                self._addresses[chain] = secrets.token_hex(16)
        return self._addresses[chain]


__all__ = ["SignerPort", "SimulatedSigner"]
