"""Solana chain client: SPL USDC transfers over JSON-RPC.

Uses raw httpx instead of solana-py; every call is JSON-RPC 2.0. The
transfer is described as a transferChecked instruction and handed to the
SignerPort, which returns the serialized, signed transaction in base64.
"""
from __future__ import annotations

import logging
import re
import secrets
from decimal import Decimal
from typing import Any, Optional

import httpx

from ...exceptions import ChainClientError, RPCError, ValidationError
from ...logging_config import mask_address
from ...models import USDC_DECIMALS, Chain, ChainFamily, to_minor_units
from ..signer import SignerPort
from .base import ChainClient

logger = logging.getLogger(__name__)

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"

_BASE58_ADDRESS = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def is_solana_address(address: str) -> bool:
    return bool(address) and bool(_BASE58_ADDRESS.match(address))


class SolanaRPCClient:
    """Async Solana JSON-RPC client."""

    def __init__(self, rpc_url: str, http_client: httpx.AsyncClient, commitment: str = "confirmed"):
        self.rpc_url = rpc_url
        self.commitment = commitment
        self._client = http_client
        self._request_id = 0

    async def _rpc(self, method: str, params: list[Any] | None = None) -> Any:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }
        try:
            resp = await self._client.post(self.rpc_url, json=payload)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise ChainClientError(f"{method} failed: {e}", chain=Chain.SOLANA.value) from e
        data = resp.json()
        if "error" in data:
            error = data["error"] or {}
            raise RPCError(
                error.get("message", "Unknown RPC error"),
                chain=Chain.SOLANA.value,
                code=error.get("code"),
                method=method,
            )
        return data.get("result")

    async def get_token_accounts_by_owner(self, owner: str, mint: str) -> list[dict[str, Any]]:
        result = await self._rpc(
            "getTokenAccountsByOwner",
            [
                owner,
                {"mint": mint},
                {"encoding": "jsonParsed", "commitment": self.commitment},
            ],
        )
        return (result or {}).get("value", [])

    async def get_latest_blockhash(self) -> str:
        result = await self._rpc("getLatestBlockhash", [{"commitment": self.commitment}])
        return result["value"]["blockhash"]

    async def send_raw_transaction(self, signed_tx_base64: str) -> str:
        """Send a signed transaction. Returns the transaction signature."""
        return await self._rpc(
            "sendTransaction",
            [signed_tx_base64, {"encoding": "base64", "skipPreflight": False}],
        )


def _token_amount(account: dict[str, Any]) -> int:
    info = account["account"]["data"]["parsed"]["info"]
    return int(info["tokenAmount"]["amount"])


class SolanaChainClient(ChainClient):
    """USDC on Solana."""

    family = ChainFamily.ACCOUNT

    def __init__(
        self,
        rpc_url: str,
        usdc_mint: str,
        signer: SignerPort,
        *,
        simulated: bool = False,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.usdc_mint = usdc_mint
        self._signer = signer
        self.simulated = simulated
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self.rpc = SolanaRPCClient(rpc_url, self._http_client)

    async def _token_account(self, owner: str) -> str:
        accounts = await self.rpc.get_token_accounts_by_owner(owner, self.usdc_mint)
        if not accounts:
            raise ChainClientError(
                f"No USDC token account for {mask_address(owner)}; it must be created before transfer",
                chain=Chain.SOLANA.value,
            )
        return accounts[0]["pubkey"]

    async def send_usdc(self, chain: Chain, destination_address: str, amount: Decimal) -> str:
        self._require_family(chain)
        if not is_solana_address(destination_address):
            raise ValidationError(
                f"Invalid Solana address '{destination_address}'", field="destination_address"
            )
        if self.simulated:
            signature = secrets.token_hex(32)
            logger.info("[SIMULATED] Sent %s USDC on Solana to %s: %s",
                        amount, mask_address(destination_address), signature)
            return signature

        owner = await self._signer.get_address(chain)
        source = await self._token_account(owner)
        destination = await self._token_account(destination_address)
        blockhash = await self.rpc.get_latest_blockhash()

        unsigned_tx = {
            "program_id": TOKEN_PROGRAM_ID,
            "instruction": "transferChecked",
            "source": source,
            "mint": self.usdc_mint,
            "destination": destination,
            "owner": owner,
            "amount": to_minor_units(amount),
            "decimals": USDC_DECIMALS,
            "recent_blockhash": blockhash,
        }
        signed = await self._signer.sign_transaction(chain, unsigned_tx)
        signature = await self.rpc.send_raw_transaction(signed)
        logger.info("Sent %s USDC on Solana to %s: %s", amount, mask_address(destination_address), signature)
        return signature

    async def get_usdc_balance(self, chain: Chain, address: str) -> Decimal:
        self._require_family(chain)
        if not is_solana_address(address):
            raise ValidationError(f"Invalid Solana address '{address}'", field="address")
        if self.simulated:
            return Decimal("0")
        accounts = await self.rpc.get_token_accounts_by_owner(address, self.usdc_mint)
        raw = sum(_token_amount(a) for a in accounts)
        return Decimal(raw) / (10 ** USDC_DECIMALS)

    async def close(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()


__all__ = ["SolanaChainClient", "SolanaRPCClient", "TOKEN_PROGRAM_ID", "is_solana_address"]
