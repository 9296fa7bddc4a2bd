"""Tests for bridge and chain clients: ABI encoding, CCTP calls and JSON-RPC handling."""
from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest

from tap_settlement.clients.bridge import (
    CircleCCTPBridgeClient,
    SimulatedBridgeClient,
    encode_deposit_for_burn,
    encode_receive_message,
    split_attestation_id,
)
from tap_settlement.clients.chains import (
    ChainClientRegistry,
    ContractCallSender,
    EvmChainClient,
    SolanaChainClient,
)
from tap_settlement.clients.chains.evm import (
    encode_balance_of,
    encode_erc20_approve,
    encode_erc20_transfer,
    function_selector,
    is_evm_address,
)
from tap_settlement.clients.chains.solana import is_solana_address
from tap_settlement.clients.signer import SimulatedSigner
from tap_settlement.constants import (
    MESSAGE_TRANSMITTER_V2,
    TOKEN_MESSENGER_V2,
    USDC_ADDRESSES,
    get_cctp_domain,
)
from tap_settlement.exceptions import (
    AttestationNotReadyError,
    BridgeClientError,
    ChainClientError,
    RPCError,
    UnsupportedChainError,
    ValidationError,
)
from tap_settlement.models import Chain, ChainFamily

from .fakes import BASE_PAYOUT_ADDRESS, CUSTODIAL_ADDRESSES, SOLANA_PAYOUT_ADDRESS, RecordingChainClient

BURN_HASH = "0x" + "ee" * 32


class RecordingSender(ContractCallSender):
    def __init__(self):
        self.calls: list[tuple[Chain, str, str]] = []

    async def send_contract_call(self, chain, to, data):
        self.calls.append((chain, to, data))
        return f"0x{len(self.calls):064x}"


def json_rpc_transport(results: dict, seen: list):
    """MockTransport answering JSON-RPC methods from a dict."""
    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        seen.append(payload)
        result = results[payload["method"]]
        if isinstance(result, dict) and "error" in result:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], **result})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": result})
    return httpx.MockTransport(handler)


class TestAbiEncoding:
    def test_known_selectors(self):
        """Test selectors derived from signatures match the well-known values."""
        assert function_selector("transfer(address,uint256)") == "a9059cbb"
        assert function_selector("approve(address,uint256)") == "095ea7b3"
        assert function_selector("balanceOf(address)") == "70a08231"
        assert function_selector("receiveMessage(bytes,bytes)") == "57ecfd28"

    def test_erc20_transfer(self):
        """Test transfer calldata is selector, address word, amount word."""
        data = encode_erc20_transfer(BASE_PAYOUT_ADDRESS, 1_500_000)

        assert data.startswith("0xa9059cbb")
        assert len(data) == 2 + 8 + 64 * 2
        assert data[10:74] == "0" * 24 + "ab" * 20
        assert int(data[74:], 16) == 1_500_000

    def test_erc20_approve_and_balance(self):
        assert encode_erc20_approve(TOKEN_MESSENGER_V2, 1).startswith("0x095ea7b3")
        assert encode_balance_of(BASE_PAYOUT_ADDRESS).startswith("0x70a08231")

    def test_deposit_for_burn_layout(self):
        """Test depositForBurn carries seven words with domain and finality in place."""
        data = encode_deposit_for_burn(
            amount=2_000_000,
            destination_domain=6,
            mint_recipient=CUSTODIAL_ADDRESSES[Chain.BASE],
            burn_token=USDC_ADDRESSES[Chain.ETHEREUM],
        )
        words = [data[10 + i * 64:10 + (i + 1) * 64] for i in range(7)]

        assert len(data) == 2 + 8 + 64 * 7
        assert int(words[0], 16) == 2_000_000
        assert int(words[1], 16) == 6
        assert words[2].endswith("22" * 20)
        assert words[3].endswith(USDC_ADDRESSES[Chain.ETHEREUM][2:].lower())
        assert words[4] == "0" * 64
        assert int(words[5], 16) == 0
        assert int(words[6], 16) == 2000

    def test_receive_message_layout(self):
        """Test receiveMessage encodes two dynamic byte arrays."""
        data = encode_receive_message(b"\x01\x02", b"\x03")
        body = data[10:]
        words = [body[i:i + 64] for i in range(0, len(body), 64)]

        assert data.startswith("0x57ecfd28")
        assert int(words[0], 16) == 64
        assert int(words[1], 16) == 128
        assert int(words[2], 16) == 2
        assert words[3].startswith("0102")
        assert int(words[4], 16) == 1
        assert words[5].startswith("03")

    def test_split_attestation_id(self):
        assert split_attestation_id("0xabcd:0x01") == (b"\xab\xcd", b"\x01")

    @pytest.mark.parametrize("value", ["abcd", ":01", "zz:01"])
    def test_split_attestation_id_invalid(self, value):
        with pytest.raises(ValidationError):
            split_attestation_id(value)

    def test_address_checks(self):
        assert is_evm_address(BASE_PAYOUT_ADDRESS)
        assert not is_evm_address("0x1234")
        assert is_solana_address(SOLANA_PAYOUT_ADDRESS)
        assert not is_solana_address("0OIl")


class TestCctpDomains:
    def test_domains(self):
        assert get_cctp_domain(Chain.ETHEREUM) == 0
        assert get_cctp_domain(Chain.SOLANA) == 5
        assert get_cctp_domain(Chain.BASE) == 6


class TestSimulatedBridge:
    async def test_attestation_after_polls(self):
        """Test the attestation appears after the configured number of polls."""
        bridge = SimulatedBridgeClient(not_ready_polls=1)
        burn = await bridge.burn_usdc(Chain.SOLANA, Decimal("1"), "custody", destination_chain=Chain.BASE)

        with pytest.raises(AttestationNotReadyError):
            await bridge.get_attestation(burn)
        attestation = await bridge.get_attestation(burn)

        assert attestation.startswith("sim_att_")
        assert await bridge.get_attestation(burn) == attestation

    async def test_burns_are_distinct(self):
        bridge = SimulatedBridgeClient()
        first = await bridge.burn_usdc(Chain.SOLANA, Decimal("1"), "custody")
        second = await bridge.burn_usdc(Chain.SOLANA, Decimal("1"), "custody")

        assert first != second
        assert bridge.burn_count == 2

    async def test_mint_is_deterministic(self):
        bridge = SimulatedBridgeClient()
        first = await bridge.mint_usdc(Chain.BASE, "sim_att_x", CUSTODIAL_ADDRESSES[Chain.BASE])
        second = await bridge.mint_usdc(Chain.BASE, "sim_att_x", CUSTODIAL_ADDRESSES[Chain.BASE])

        assert first == second
        assert bridge.mint_count == 2


class TestCircleCCTPBridgeClient:
    def _client(self, sender, handler=None):
        transport = httpx.MockTransport(handler or (lambda request: httpx.Response(404)))
        return CircleCCTPBridgeClient(
            sender,
            attestation_url="https://iris.test/v2/messages/",
            http_client=httpx.AsyncClient(transport=transport),
        )

    async def test_burn_approves_then_deposits(self):
        """Test a burn sends approve to USDC then depositForBurn to TokenMessenger."""
        sender = RecordingSender()
        client = self._client(sender)

        burn_hash = await client.burn_usdc(
            Chain.ETHEREUM, Decimal("2"), CUSTODIAL_ADDRESSES[Chain.ETHEREUM],
            destination_chain=Chain.BASE, mint_recipient=CUSTODIAL_ADDRESSES[Chain.BASE],
        )

        (approve_chain, approve_to, approve_data), (deposit_chain, deposit_to, deposit_data) = sender.calls
        assert approve_chain is deposit_chain is Chain.ETHEREUM
        assert approve_to == USDC_ADDRESSES[Chain.ETHEREUM]
        assert approve_data.startswith("0x095ea7b3")
        assert deposit_to == TOKEN_MESSENGER_V2
        assert int(deposit_data[10 + 64:10 + 128], 16) == 6
        assert burn_hash == f"0x{2:064x}"

    async def test_burn_from_solana_unsupported(self):
        """Test CCTP burns are limited to EVM chains."""
        sender = RecordingSender()
        client = self._client(sender)

        with pytest.raises(UnsupportedChainError):
            await client.burn_usdc(
                Chain.SOLANA, Decimal("1"), CUSTODIAL_ADDRESSES[Chain.SOLANA],
                destination_chain=Chain.BASE, mint_recipient=CUSTODIAL_ADDRESSES[Chain.BASE],
            )
        assert sender.calls == []

    async def test_burn_requires_distinct_destination(self):
        client = self._client(RecordingSender())

        with pytest.raises(ValidationError):
            await client.burn_usdc(
                Chain.BASE, Decimal("1"), CUSTODIAL_ADDRESSES[Chain.BASE],
                destination_chain=Chain.BASE, mint_recipient=CUSTODIAL_ADDRESSES[Chain.BASE],
            )

    async def test_attestation_404_is_not_ready(self):
        """Test an unindexed burn reads as not ready."""
        client = self._client(RecordingSender())

        with pytest.raises(AttestationNotReadyError):
            await client.get_attestation(BURN_HASH, source_chain=Chain.ETHEREUM)

    async def test_attestation_pending_is_not_ready(self):
        client = self._client(
            RecordingSender(),
            lambda request: httpx.Response(
                200, json={"messages": [{"status": "pending_confirmations", "attestation": "PENDING"}]},
            ),
        )

        with pytest.raises(AttestationNotReadyError):
            await client.get_attestation(BURN_HASH, source_chain=Chain.ETHEREUM)

    async def test_attestation_complete(self):
        """Test a complete attestation is returned as message:attestation."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={
                "messages": [{"status": "complete", "message": "0xaa", "attestation": "0xbb"}],
            })

        client = self._client(RecordingSender(), handler)

        assert await client.get_attestation(BURN_HASH, source_chain=Chain.BASE) == "0xaa:0xbb"
        assert seen[0].url.path == "/v2/messages/6"
        assert seen[0].url.params["transactionHash"] == BURN_HASH

    async def test_attestation_server_error(self):
        client = self._client(RecordingSender(), lambda request: httpx.Response(500))

        with pytest.raises(BridgeClientError):
            await client.get_attestation(BURN_HASH, source_chain=Chain.ETHEREUM)

    async def test_mint_calls_receive_message(self):
        """Test a mint submits receiveMessage to the MessageTransmitter."""
        sender = RecordingSender()
        client = self._client(sender)

        await client.mint_usdc(Chain.BASE, "0xaa:0xbb", CUSTODIAL_ADDRESSES[Chain.BASE])

        [(chain, to, data)] = sender.calls
        assert chain is Chain.BASE
        assert to == MESSAGE_TRANSMITTER_V2
        assert data.startswith("0x57ecfd28")


class TestChainClientRegistry:
    def test_lookup_by_family(self):
        evm = RecordingChainClient(ChainFamily.EVM)
        registry = ChainClientRegistry([evm])

        assert registry.for_chain(Chain.BASE) is evm
        assert registry.for_chain(Chain.ETHEREUM) is evm
        assert ChainFamily.EVM in registry
        with pytest.raises(UnsupportedChainError):
            registry.for_chain(Chain.SOLANA)


class TestEvmChainClient:
    async def test_send_usdc_live(self):
        """Test a live send estimates, signs and broadcasts an ERC-20 transfer."""
        seen = []
        transport = json_rpc_transport({
            "eth_getTransactionCount": "0x5",
            "eth_gasPrice": "0x3b9aca00",
            "eth_estimateGas": "0x5208",
            "eth_sendRawTransaction": "0xfeed",
        }, seen)
        signer = SimulatedSigner({Chain.BASE: CUSTODIAL_ADDRESSES[Chain.BASE]})
        client = EvmChainClient(
            {Chain.BASE: "https://base.test"},
            {Chain.BASE: USDC_ADDRESSES[Chain.BASE]},
            signer,
            http_client=httpx.AsyncClient(transport=transport),
        )

        tx_hash = await client.send_usdc(Chain.BASE, BASE_PAYOUT_ADDRESS, Decimal("1.5"))

        assert tx_hash == "0xfeed"
        assert [p["method"] for p in seen] == [
            "eth_getTransactionCount", "eth_gasPrice", "eth_estimateGas", "eth_sendRawTransaction",
        ]
        estimate = seen[2]["params"][0]
        assert estimate["to"] == USDC_ADDRESSES[Chain.BASE]
        assert estimate["data"].startswith("0xa9059cbb")
        assert seen[3]["params"][0].startswith("0x")

    async def test_rpc_error(self):
        """Test a JSON-RPC error object raises RPCError."""
        transport = json_rpc_transport(
            {"eth_getTransactionCount": {"error": {"code": -32000, "message": "nonce too low"}}}, [],
        )
        client = EvmChainClient(
            {Chain.BASE: "https://base.test"},
            {Chain.BASE: USDC_ADDRESSES[Chain.BASE]},
            SimulatedSigner(),
            http_client=httpx.AsyncClient(transport=transport),
        )

        with pytest.raises(RPCError) as exc_info:
            await client.send_usdc(Chain.BASE, BASE_PAYOUT_ADDRESS, Decimal("1"))
        assert exc_info.value.code == -32000

    async def test_http_failure(self):
        """Test transport failures surface as ChainClientError."""
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        client = EvmChainClient(
            {Chain.BASE: "https://base.test"},
            {Chain.BASE: USDC_ADDRESSES[Chain.BASE]},
            SimulatedSigner(),
            http_client=httpx.AsyncClient(transport=transport),
        )

        with pytest.raises(ChainClientError):
            await client.send_usdc(Chain.BASE, BASE_PAYOUT_ADDRESS, Decimal("1"))

    async def test_invalid_destination(self):
        client = EvmChainClient({}, {}, SimulatedSigner(), simulated=True)

        with pytest.raises(ValidationError):
            await client.send_usdc(Chain.BASE, SOLANA_PAYOUT_ADDRESS, Decimal("1"))
        await client.close()

    async def test_rejects_solana(self):
        client = EvmChainClient({}, {}, SimulatedSigner(), simulated=True)

        with pytest.raises(UnsupportedChainError):
            await client.send_usdc(Chain.SOLANA, SOLANA_PAYOUT_ADDRESS, Decimal("1"))
        await client.close()

    async def test_balance(self):
        """Test balanceOf results are scaled by six decimals."""
        transport = json_rpc_transport({"eth_call": hex(2_500_000)}, [])
        client = EvmChainClient(
            {Chain.ETHEREUM: "https://eth.test"},
            {Chain.ETHEREUM: USDC_ADDRESSES[Chain.ETHEREUM]},
            SimulatedSigner(),
            http_client=httpx.AsyncClient(transport=transport),
        )

        assert await client.get_usdc_balance(Chain.ETHEREUM, BASE_PAYOUT_ADDRESS) == Decimal("2.5")


class TestSolanaChainClient:
    async def test_simulated_send(self):
        client = SolanaChainClient("https://sol.test", USDC_ADDRESSES[Chain.SOLANA], SimulatedSigner(), simulated=True)

        signature = await client.send_usdc(Chain.SOLANA, SOLANA_PAYOUT_ADDRESS, Decimal("1"))

        assert len(signature) == 64
        await client.close()

    async def test_invalid_destination(self):
        client = SolanaChainClient("https://sol.test", USDC_ADDRESSES[Chain.SOLANA], SimulatedSigner(), simulated=True)

        with pytest.raises(ValidationError):
            await client.send_usdc(Chain.SOLANA, BASE_PAYOUT_ADDRESS, Decimal("1"))
        await client.close()

    async def test_balance_sums_token_accounts(self):
        """Test the balance adds up every USDC token account of the owner."""
        def account(amount):
            return {
                "pubkey": "acct",
                "account": {"data": {"parsed": {"info": {"tokenAmount": {"amount": amount}}}}},
            }

        transport = json_rpc_transport(
            {"getTokenAccountsByOwner": {"value": [account("1500000"), account("250000")]}}, [],
        )
        client = SolanaChainClient(
            "https://sol.test", USDC_ADDRESSES[Chain.SOLANA], SimulatedSigner(),
            http_client=httpx.AsyncClient(transport=transport),
        )

        assert await client.get_usdc_balance(Chain.SOLANA, SOLANA_PAYOUT_ADDRESS) == Decimal("1.75")

    async def test_send_without_token_account(self):
        """Test a destination without a USDC account raises ChainClientError."""
        transport = json_rpc_transport({"getTokenAccountsByOwner": {"value": []}}, [])
        client = SolanaChainClient(
            "https://sol.test", USDC_ADDRESSES[Chain.SOLANA],
            SimulatedSigner({Chain.SOLANA: CUSTODIAL_ADDRESSES[Chain.SOLANA]}),
            http_client=httpx.AsyncClient(transport=transport),
        )

        with pytest.raises(ChainClientError):
            await client.send_usdc(Chain.SOLANA, SOLANA_PAYOUT_ADDRESS, Decimal("1"))


class TestSimulatedSigner:
    async def test_signatures_per_family(self):
        signer = SimulatedSigner()

        evm = await signer.sign_transaction(Chain.BASE, {"nonce": 1})
        sol = await signer.sign_transaction(Chain.SOLANA, {"nonce": 1})

        assert evm.startswith("0x") and len(evm) == 66
        assert not sol.startswith("0x")
        assert (await signer.get_address(Chain.BASE)) == (await signer.get_address(Chain.BASE))
