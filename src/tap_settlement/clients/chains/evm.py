"""EVM chain client: ERC-20 USDC transfers over JSON-RPC."""
from __future__ import annotations

import logging
import secrets
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

import httpx
from web3 import Web3

from ...constants import (
    ERC20_APPROVE_SIGNATURE,
    ERC20_BALANCE_OF_SIGNATURE,
    ERC20_TRANSFER_SIGNATURE,
    EVM_CHAIN_IDS,
)
from ...exceptions import ChainClientError, RPCError, UnsupportedChainError, ValidationError
from ...logging_config import mask_address
from ...models import USDC_DECIMALS, Chain, ChainFamily, to_minor_units
from ..signer import SignerPort
from .base import ChainClient, ContractCallSender

logger = logging.getLogger(__name__)

# Headroom over eth_estimateGas
GAS_LIMIT_MULTIPLIER = Decimal("1.2")


# ---------------------------------------------------------------------------
# ABI helpers
# ---------------------------------------------------------------------------

def function_selector(signature: str) -> str:
    """First four bytes of keccak(signature), hex without 0x."""
    return bytes(Web3.keccak(text=signature)[:4]).hex()


def encode_uint(value: int) -> str:
    if value < 0:
        raise ValueError("uint cannot be negative")
    return hex(value)[2:].zfill(64)


def encode_address(address: str) -> str:
    """Left-pad a 20-byte address (or bytes32) to one ABI word."""
    return address.lower().removeprefix("0x").zfill(64)


def encode_erc20_transfer(to_address: str, amount: int) -> str:
    """Encode ERC-20 transfer(address, uint256) call."""
    return f"0x{function_selector(ERC20_TRANSFER_SIGNATURE)}{encode_address(to_address)}{encode_uint(amount)}"


def encode_erc20_approve(spender: str, amount: int) -> str:
    """Encode ERC-20 approve(address, uint256) call."""
    return f"0x{function_selector(ERC20_APPROVE_SIGNATURE)}{encode_address(spender)}{encode_uint(amount)}"


def encode_balance_of(owner: str) -> str:
    return f"0x{function_selector(ERC20_BALANCE_OF_SIGNATURE)}{encode_address(owner)}"


def is_evm_address(address: str) -> bool:
    return bool(address) and Web3.is_address(address)


# ---------------------------------------------------------------------------
# JSON-RPC
# ---------------------------------------------------------------------------

class EvmRPCClient:
    """JSON-RPC client for one EVM chain."""

    def __init__(self, chain: Chain, rpc_url: str, http_client: httpx.AsyncClient):
        self.chain = chain
        self._rpc_url = rpc_url
        self._http_client = http_client
        self._request_id = 0

    async def _call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Make JSON-RPC call."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }
        try:
            response = await self._http_client.post(
                self._rpc_url,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ChainClientError(f"{method} failed: {e}", chain=self.chain.value) from e

        result = response.json()
        if "error" in result:
            error = result["error"] or {}
            raise RPCError(
                f"RPC error: {error.get('message', 'unknown error')}",
                chain=self.chain.value,
                code=error.get("code"),
                method=method,
            )
        return result.get("result")

    async def get_gas_price(self) -> int:
        """Current gas price in wei."""
        return int(await self._call("eth_gasPrice"), 16)

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return int(await self._call("eth_estimateGas", [tx]), 16)

    async def get_nonce(self, address: str) -> int:
        """Transaction count (nonce) including pending transactions."""
        return int(await self._call("eth_getTransactionCount", [address, "pending"]), 16)

    async def eth_call(self, to: str, data: str) -> str:
        return await self._call("eth_call", [{"to": to, "data": data}, "latest"])

    async def send_raw_transaction(self, signed_tx: str) -> str:
        """Broadcast signed transaction."""
        return await self._call("eth_sendRawTransaction", [signed_tx])


# ---------------------------------------------------------------------------
# Chain client
# ---------------------------------------------------------------------------

class EvmChainClient(ChainClient, ContractCallSender):
    """USDC on Ethereum and Base, signed through a SignerPort."""

    family = ChainFamily.EVM

    def __init__(
        self,
        rpc_urls: Mapping[Chain, str],
        usdc_addresses: Mapping[Chain, str],
        signer: SignerPort,
        *,
        simulated: bool = False,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self._rpc_urls = dict(rpc_urls)
        self._usdc_addresses = dict(usdc_addresses)
        self._signer = signer
        self.simulated = simulated
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._rpc_clients: Dict[Chain, EvmRPCClient] = {}

    def rpc(self, chain: Chain) -> EvmRPCClient:
        self._require_family(chain)
        if chain not in self._rpc_clients:
            url = self._rpc_urls.get(chain)
            if not url:
                raise UnsupportedChainError(chain.value, f"No RPC URL configured for {chain.value}")
            self._rpc_clients[chain] = EvmRPCClient(chain, url, self._http_client)
        return self._rpc_clients[chain]

    def usdc_address(self, chain: Chain) -> str:
        self._require_family(chain)
        address = self._usdc_addresses.get(chain)
        if not address:
            raise UnsupportedChainError(chain.value, f"No USDC contract configured for {chain.value}")
        return address

    async def send_contract_call(self, chain: Chain, to: str, data: str) -> str:
        if self.simulated:
            tx_hash = f"0x{secrets.token_hex(32)}"
            logger.info("[SIMULATED] %s call to %s: %s", chain.value, mask_address(to), tx_hash)
            return tx_hash

        rpc = self.rpc(chain)
        sender = await self._signer.get_address(chain)
        nonce = await rpc.get_nonce(sender)
        gas_price = await rpc.get_gas_price()
        gas_estimate = await rpc.estimate_gas({"from": sender, "to": to, "data": data, "value": "0x0"})

        tx = {
            "chainId": EVM_CHAIN_IDS[chain],
            "from": sender,
            "to": Web3.to_checksum_address(to),
            "value": 0,
            "data": data,
            "nonce": nonce,
            "gas": int(gas_estimate * GAS_LIMIT_MULTIPLIER),
            "gasPrice": gas_price,
        }
        signed_tx = await self._signer.sign_transaction(chain, tx)
        tx_hash = await rpc.send_raw_transaction(signed_tx)
        logger.info("Submitted %s call to %s (nonce %d): %s", chain.value, mask_address(to), nonce, tx_hash)
        return tx_hash

    async def send_usdc(self, chain: Chain, destination_address: str, amount: Decimal) -> str:
        self._require_family(chain)
        if not is_evm_address(destination_address):
            raise ValidationError(
                f"Invalid EVM address '{destination_address}'", field="destination_address"
            )
        data = encode_erc20_transfer(destination_address, to_minor_units(amount))
        tx_hash = await self.send_contract_call(chain, self.usdc_address(chain), data)
        logger.info("Sent %s USDC on %s to %s: %s", amount, chain.value, mask_address(destination_address), tx_hash)
        return tx_hash

    async def get_usdc_balance(self, chain: Chain, address: str) -> Decimal:
        self._require_family(chain)
        if not is_evm_address(address):
            raise ValidationError(f"Invalid EVM address '{address}'", field="address")
        if self.simulated:
            return Decimal("0")
        result = await self.rpc(chain).eth_call(self.usdc_address(chain), encode_balance_of(address))
        raw = int(result, 16) if result and result != "0x" else 0
        return Decimal(raw) / (10 ** USDC_DECIMALS)

    async def close(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()


__all__ = [
    "EvmChainClient",
    "EvmRPCClient",
    "encode_address",
    "encode_balance_of",
    "encode_erc20_approve",
    "encode_erc20_transfer",
    "encode_uint",
    "function_selector",
    "is_evm_address",
]
